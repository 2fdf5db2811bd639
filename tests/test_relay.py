import io
import threading
from datetime import datetime
from pathlib import Path

from dropzone.relay import Message, MessageRelay
from dropzone.storage import StoredFile

AT = datetime(2024, 5, 1, 14, 3, 9)


def test_message_is_printed_once():
    stream = io.StringIO()
    MessageRelay(stream=stream).deliver(Message(text="hello", sender="192.168.1.20", received_at=AT))

    assert stream.getvalue() == "[14:03:09] MESSAGE from 192.168.1.20\n  hello\n"

def test_multiline_message_is_indented():
    stream = io.StringIO()
    MessageRelay(stream=stream).deliver(Message(text="line one\nline two", received_at=AT))

    assert stream.getvalue().splitlines() == ["[14:03:09] MESSAGE", "  line one", "  line two"]

def test_control_characters_are_replaced():
    stream = io.StringIO()
    MessageRelay(stream=stream).deliver(Message(text="\x1b[2Jgotcha\x07", received_at=AT))

    out = stream.getvalue()
    assert "\x1b" not in out
    assert "\x07" not in out
    assert "�[2Jgotcha�" in out

def test_file_stored_line():
    stream = io.StringIO()
    stored = StoredFile(name="photo.jpg", path=Path("/tmp/photo.jpg"), size=1536, created_at=AT)

    MessageRelay(stream=stream).file_stored(stored, sender="10.0.0.5")

    assert stream.getvalue() == "[14:03:09] FILE photo.jpg (1.5 KB) from 10.0.0.5\n"

def test_default_stream_is_stdout(capsys):
    MessageRelay().deliver(Message(text="to the console", received_at=AT))
    assert "to the console" in capsys.readouterr().out

def test_concurrent_messages_are_not_interleaved():
    stream = io.StringIO()
    relay = MessageRelay(stream=stream)
    texts = [f"message {i}\nsecond line {i}" for i in range(20)]

    threads = [
        threading.Thread(target=relay.deliver, args=(Message(text=t, received_at=AT),))
        for t in texts
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    lines = stream.getvalue().splitlines()
    assert len(lines) == 60
    for i in range(0, 60, 3):
        assert lines[i] == "[14:03:09] MESSAGE"
        n = lines[i + 1].split()[-1]
        assert lines[i + 2] == f"  second line {n}"
