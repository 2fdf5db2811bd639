INDEX_HTML = r'''
<!doctype html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>DropZone</title>
    <link rel="icon" href="/favicon.svg" type="image/svg+xml">
    <style>
        body { font-family: Arial; margin: 40px; max-width: 640px; }
        .upload-area {
            height: 180px;
            border: 2px dashed #ccc;
            border-radius: 18px;
            text-align: center;
            padding: 30px;
            font-size: 16px;
            color: #999;
            margin-bottom: 20px;
            user-select: none;
            box-sizing: border-box;
        }
        .upload-area.dragover {
            background-color: #eef;
            border-color: #00f;
            color: #00f;
        }
        #fileInput { display: none; }
        textarea { width: 100%; box-sizing: border-box; min-height: 90px; font-size: 15px; padding: 8px; }
        button { margin-top: 8px; padding: 8px 16px; font-size: 15px; }
        ul#log { padding-left: 18px; }
        ul#log li.error { color: #b00; }
        .hint { color: #666; font-size: 13px; margin-top: 12px; }
    </style>
</head>
<body>
<h1>DropZone</h1>

<div class="upload-area" id="uploadArea">
    Drag and drop files here<br>or tap to select files
</div>
<input id="fileInput" type="file" name="file" multiple>

<h2>Message</h2>
<form id="messageForm" data-max-bytes="{{ max_message_bytes }}">
    <textarea id="messageText" name="message" placeholder="Type a message"></textarea>
    <button type="submit">Send</button>
</form>

<ul id="log"></ul>

{% if max_upload %}
<p class="hint">Maximum upload size: {{ max_upload }}</p>
{% endif %}

<script>
    const uploadArea = document.getElementById('uploadArea');
    const fileInput = document.getElementById('fileInput');
    const messageForm = document.getElementById('messageForm');
    const messageText = document.getElementById('messageText');
    const log = document.getElementById('log');

    function note(text, isError) {
        const li = document.createElement('li');
        li.textContent = text;
        if (isError) li.className = 'error';
        log.prepend(li);
    }

    async function post(url, body) {
        const res = await fetch(url, {
            method: 'POST',
            body: body,
            headers: { 'Accept': 'application/json' },
        });
        let payload = {};
        try { payload = await res.json(); } catch (e) {}
        if (!res.ok) throw new Error(payload.error || `HTTP ${res.status}`);
        return payload;
    }

    async function uploadFiles(files) {
        for (const file of files) {
            const data = new FormData();
            data.append('file', file, file.name);
            try {
                const payload = await post('/upload', data);
                for (const f of payload.files) note(`Sent ${file.name} (saved as ${f.saved_as})`);
            } catch (e) {
                note(`Failed to send ${file.name}: ${e.message}`, true);
            }
        }
    }

    uploadArea.addEventListener('click', () => fileInput.click());
    fileInput.addEventListener('change', () => {
        uploadFiles(fileInput.files);
        fileInput.value = '';
    });
    uploadArea.addEventListener('dragover', (e) => {
        e.preventDefault();
        uploadArea.classList.add('dragover');
    });
    uploadArea.addEventListener('dragleave', () => {
        uploadArea.classList.remove('dragover');
    });
    uploadArea.addEventListener('drop', (e) => {
        e.preventDefault();
        uploadArea.classList.remove('dragover');
        uploadFiles(e.dataTransfer.files);
    });

    messageForm.addEventListener('submit', async (e) => {
        e.preventDefault();
        const text = messageText.value.trim();
        if (!text) return;
        if (new TextEncoder().encode(text).length > Number(messageForm.dataset.maxBytes)) {
            note(`Message is too long (limit {{ max_message_bytes }} bytes)`, true);
            return;
        }
        const data = new FormData();
        data.append('message', text);
        try {
            await post('/message', data);
            note('Message sent');
            messageText.value = '';
        } catch (err) {
            note(`Failed to send message: ${err.message}`, true);
        }
    });
</script>
</body>
</html>
'''

FAVICON_SVG = '''<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 64 64">
  <rect width="64" height="64" rx="14" fill="#6b3fa0"/>
  <path d="M32 12v28M20 28l12 12 12-12" stroke="#fff" stroke-width="6" fill="none" stroke-linecap="round" stroke-linejoin="round"/>
  <path d="M16 48h32" stroke="#fff" stroke-width="6" stroke-linecap="round"/>
</svg>
'''
