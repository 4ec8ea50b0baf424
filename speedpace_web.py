#!/usr/bin/env python3
"""
speedpace_web.py

Local web app (Flask) around the speedpace pacing engine.

Features:
- Paste text, or upload PDF/EPUB (read-only) and extract its text
- Chunk mode: 4-word chunks revealed at the target WPM
- Scroll mode: text block scrolls past the viewport in exactly the reading
  time, with a short "get ready" overlay at start
- Start / Pause / Reset, state and progress polled from the engine

The engine runs on a single asyncio loop in its own thread (EngineRunner).
Request handlers never touch engine objects directly; every call is
marshalled onto that loop.
"""

from __future__ import annotations

import argparse
import asyncio
import concurrent.futures
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional

from bs4 import BeautifulSoup
from dotenv import load_dotenv
from ebooklib import epub
from flask import Flask, jsonify, render_template_string, request
from pypdf import PdfReader

from pacing import CHUNK_SIZE, DEFAULT_RATE_WPM, INTRO_TEXT, MAX_RATE_WPM, InvalidInput, build_chunks, tokenize_words
from session import RenderEvent, SessionController
from timers import AsyncioTimerHost

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5000
ENGINE_CALL_TIMEOUT_S = 5.0


# ============================================================
# Text extraction
# ============================================================
def normalize_whitespace(text: str) -> str:
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n[ \t]+", "\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_text_from_pdf(path: str) -> str:
    reader = PdfReader(path)
    pages_text: List[str] = []
    for i, page in enumerate(reader.pages):
        try:
            txt = page.extract_text() or ""
        except Exception as e:
            logger.warning("Could not extract text from PDF page %d: %s", i + 1, e)
            txt = ""
        pages_text.append(txt)
    return normalize_whitespace("\n\n".join(pages_text))


def extract_text_from_epub(path: str) -> str:
    book = epub.read_epub(path)
    parts: List[str] = []
    for item in book.get_items():
        media_type = str(getattr(item, "media_type", ""))
        if "application/xhtml+xml" not in media_type and "text/html" not in media_type:
            continue
        soup = BeautifulSoup(item.get_content(), "html.parser")
        for tag in soup(["script", "style", "nav"]):
            tag.decompose()
        text = normalize_whitespace(soup.get_text(separator=" ", strip=True))
        if text:
            parts.append(text)
    return normalize_whitespace("\n\n".join(parts))


def extract_text_from_file(path: str) -> str:
    ext = Path(path).suffix.lower()
    if ext == ".pdf":
        return extract_text_from_pdf(path)
    if ext == ".epub":
        return extract_text_from_epub(path)
    raise RuntimeError(f"Unsupported file type: {ext} (expected .pdf or .epub)")


def allowed_file(filename: str) -> bool:
    ext = Path(filename).suffix.lower()
    return ext in {".pdf", ".epub"}


def build_payload(text: str, filename: str) -> dict:
    tokens = tokenize_words(text)
    chunks = build_chunks(tokens, CHUNK_SIZE)
    return {
        "ok": True,
        "filename": filename,
        "text": text,
        "tokens": tokens,
        "chunks": chunks,
        "word_count": len(tokens),
        "char_count": len(text),
    }


# ============================================================
# Engine thread
# ============================================================
class EngineRunner:
    """Owns the asyncio loop thread and the one SessionController on it."""

    def __init__(self, high_refresh: bool = True) -> None:
        self._lock = threading.Lock()
        self._intro_visible = False
        self.loop = asyncio.new_event_loop()
        self.controller = SessionController(
            AsyncioTimerHost(self.loop),
            on_render=self._store_render,
            on_intro_visibility_change=self._store_intro,
            high_refresh=high_refresh,
        )
        self._latest: RenderEvent = self.controller.snapshot()
        self._thread = threading.Thread(target=self._run, name="speedpace-engine", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def call(self, fn: Callable[[SessionController], Any]) -> Any:
        async def invoke() -> Any:
            return fn(self.controller)

        future = asyncio.run_coroutine_threadsafe(invoke(), self.loop)
        return future.result(ENGINE_CALL_TIMEOUT_S)

    def snapshot(self) -> dict:
        with self._lock:
            data = self._latest.as_dict()
            data["intro_visible"] = self._intro_visible
        data["intro_text"] = INTRO_TEXT
        return data

    def shutdown(self) -> None:
        if not self._thread.is_alive():
            return
        self.call(lambda c: c.close())
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=ENGINE_CALL_TIMEOUT_S)
        self.loop.close()

    def _store_render(self, event: RenderEvent) -> None:
        with self._lock:
            self._latest = event

    def _store_intro(self, visible: bool) -> None:
        with self._lock:
            self._intro_visible = visible


def env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = 200 * 1024 * 1024  # 200MB
app.config["SPEEDPACE_HIGH_REFRESH"] = env_flag("SPEEDPACE_HIGH_REFRESH", True)

_runner: Optional[EngineRunner] = None
_runner_lock = threading.Lock()


def get_runner() -> EngineRunner:
    global _runner
    with _runner_lock:
        if _runner is None:
            _runner = EngineRunner(high_refresh=app.config["SPEEDPACE_HIGH_REFRESH"])
        return _runner


def shutdown_runner() -> None:
    global _runner
    with _runner_lock:
        runner, _runner = _runner, None
    if runner is not None:
        runner.shutdown()


HTML_PAGE = r"""
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>speedpace: Speed Reading Trainer</title>
  <meta name="viewport" content="width=device-width, initial-scale=1, viewport-fit=cover" />
  <style>
    :root {
      --bg: #0f1115;
      --panel: #181c24;
      --panel2: #202633;
      --text: #e8edf5;
      --muted: #9fb0c8;
      --accent: #66b3ff;
      --danger: #dc3545;
      --line: #2e3645;
      --sans-font: Inter, system-ui, -apple-system, "Segoe UI", Roboto, sans-serif;
    }

    * { box-sizing: border-box; }
    html, body { height: 100%; }
    body {
      margin: 0;
      background: var(--bg);
      color: var(--text);
      font-family: var(--sans-font);
    }

    .app {
      display: grid;
      grid-template-rows: auto 1fr auto;
      height: 100vh;
      max-height: 100vh;
    }

    .topbar {
      display: flex;
      gap: 10px;
      align-items: center;
      padding: 10px 12px;
      background: var(--panel);
      border-bottom: 1px solid var(--line);
      flex-wrap: wrap;
    }

    .topbar label {
      display: inline-flex;
      align-items: center;
      gap: 6px;
      color: var(--muted);
      font-size: 13px;
    }

    .btn, button, select, input[type="text"] {
      background: var(--panel2);
      color: var(--text);
      border: 1px solid var(--line);
      border-radius: 8px;
      padding: 7px 10px;
    }
    button { cursor: pointer; }
    button:hover, select:hover { border-color: var(--accent); }
    button.reset { border-color: var(--danger); }
    input.wpm { width: 80px; text-align: center; }

    .main {
      display: grid;
      grid-template-columns: 1fr 1.2fr;
      min-height: 0;
    }

    .pane {
      min-width: 0;
      min-height: 0;
      display: flex;
      flex-direction: column;
      padding: 12px;
      gap: 8px;
      border-right: 1px solid var(--line);
    }
    .pane:last-child { border-right: none; }

    #textInput {
      flex: 1;
      resize: none;
      background: rgba(255, 255, 255, 0.05);
      color: var(--text);
      border: 1px solid rgba(255, 255, 255, 0.2);
      border-radius: 16px;
      padding: 20px;
      font-size: 16px;
    }

    .stage {
      position: relative;
      flex: 1;
      border: 1px solid var(--line);
      border-radius: 12px;
      background: rgba(0, 0, 0, 0.3);
      overflow: hidden;
    }

    .chunk-view {
      position: absolute;
      inset: 0;
      display: flex;
      flex-direction: column;
      align-items: center;
      justify-content: center;
    }
    .focus-line { width: 80%; height: 1px; background: rgba(255, 255, 255, 0.2); margin: 40px 0; }
    #chunkText { font-size: 38px; line-height: 46px; font-weight: 500; text-align: center; padding: 0 20px; min-height: 46px; }

    .scroll-view { position: absolute; inset: 0; overflow: hidden; }
    #scrollBlock {
      padding: 0 24px;
      font-size: 22px;
      line-height: 1.6;
      white-space: pre-wrap;
      will-change: transform;
    }

    .intro {
      position: absolute;
      inset: 0;
      display: none;
      align-items: center;
      justify-content: center;
      backdrop-filter: blur(6px);
      background: rgba(15, 17, 21, 0.55);
      font-size: 28px;
      font-weight: 600;
    }
    .intro.visible { display: flex; }

    .meta { color: var(--muted); font-size: 13px; min-height: 20px; }
    progress { width: 100%; }

    .statusbar {
      padding: 6px 12px;
      border-top: 1px solid var(--line);
      background: var(--panel);
      color: var(--muted);
      font-size: 12px;
    }

    .error { color: #ff9a9a; }
  </style>
</head>
<body>
<div class="app">
  <div class="topbar">
    <input id="fileInput" type="file" accept=".pdf,.epub" />
    <button id="loadBtn">Load file</button>
    <label>WPM <input id="wpmInput" class="wpm" type="text" inputmode="numeric" maxlength="4" value="{{ default_wpm }}" /></label>
    <label>Mode
      <select id="modeInput">
        <option value="chunk">Chunks ({{ chunk_size }} words)</option>
        <option value="scroll">Scroll</option>
      </select>
    </label>
    <button id="playBtn">Start</button>
    <button id="resetBtn" class="reset">Reset</button>
  </div>

  <div class="main">
    <section class="pane">
      <textarea id="textInput" placeholder="Paste your text here..."></textarea>
    </section>
    <section class="pane">
      <div id="meta" class="meta">Idle</div>
      <div id="stage" class="stage">
        <div id="chunkView" class="chunk-view">
          <div class="focus-line"></div>
          <div id="chunkText"></div>
          <div class="focus-line"></div>
        </div>
        <div id="scrollView" class="scroll-view" style="display:none">
          <div id="scrollBlock"></div>
        </div>
        <div id="intro" class="intro"></div>
      </div>
      <progress id="progress" max="1" value="0"></progress>
    </section>
  </div>

  <div class="statusbar"><div id="statusLeft">Ready.</div></div>
</div>

<script>
(() => {
  const state = {
    session: null,
    pollTimer: null,
    configuredText: null,
    configuredWpm: null,
    configuredMode: null
  };

  const els = {
    fileInput: document.getElementById("fileInput"),
    loadBtn: document.getElementById("loadBtn"),
    wpmInput: document.getElementById("wpmInput"),
    modeInput: document.getElementById("modeInput"),
    playBtn: document.getElementById("playBtn"),
    resetBtn: document.getElementById("resetBtn"),
    textInput: document.getElementById("textInput"),
    meta: document.getElementById("meta"),
    chunkView: document.getElementById("chunkView"),
    chunkText: document.getElementById("chunkText"),
    scrollView: document.getElementById("scrollView"),
    scrollBlock: document.getElementById("scrollBlock"),
    intro: document.getElementById("intro"),
    progress: document.getElementById("progress"),
    statusLeft: document.getElementById("statusLeft"),
  };

  function setStatus(msg, isError = false) {
    els.statusLeft.textContent = msg;
    els.statusLeft.className = isError ? "error" : "";
  }

  async function api(path, body) {
    const opts = body === undefined
      ? { method: "GET" }
      : { method: "POST", headers: { "Content-Type": "application/json" }, body: JSON.stringify(body) };
    const res = await fetch(path, opts);
    const data = await res.json();
    if (!res.ok || data.ok === false) throw new Error(data.error || `Request failed (${res.status})`);
    return data;
  }

  function render(s) {
    state.session = s;
    const scroll = s.mode === "scroll";
    els.chunkView.style.display = scroll ? "none" : "flex";
    els.scrollView.style.display = scroll ? "block" : "none";

    if (scroll) {
      els.scrollBlock.style.transform = `translateY(${-s.offset}px)`;
    } else {
      els.chunkText.textContent = s.chunk || "";
    }

    els.intro.textContent = s.intro_text || "";
    els.intro.classList.toggle("visible", !!s.intro_visible);
    els.progress.value = s.fraction || 0;
    els.playBtn.textContent = s.is_playing ? "Pause" : "Start";
    els.meta.textContent = scroll
      ? `${s.state} | ${Math.round(s.offset)} / ${Math.round(s.total_distance)} px`
      : `${s.state} | chunk ${s.chunk_count ? s.chunk_index + 1 : 0} / ${s.chunk_count}`;

    if (s.state === "completed") setStatus("Finished.");
    syncPolling();
  }

  function syncPolling() {
    const s = state.session;
    const busy = s && (s.is_playing || s.intro_visible);
    if (busy && !state.pollTimer) {
      state.pollTimer = setInterval(poll, 40);
    } else if (!busy && state.pollTimer) {
      clearInterval(state.pollTimer);
      state.pollTimer = null;
    }
  }

  async function poll() {
    try {
      render(await api("/api/session"));
    } catch (err) {
      setStatus(`Lost engine: ${err.message || err}`, true);
    }
  }

  function needsConfigure() {
    const s = state.session;
    return !s || s.state === "idle"
      || state.configuredText !== els.textInput.value
      || state.configuredWpm !== els.wpmInput.value
      || state.configuredMode !== els.modeInput.value;
  }

  async function configure() {
    const mode = els.modeInput.value;
    render(await api("/api/session/configure", {
      text: els.textInput.value,
      wpm: els.wpmInput.value,
      mode: mode
    }));
    state.configuredText = els.textInput.value;
    state.configuredWpm = els.wpmInput.value;
    state.configuredMode = mode;

    if (mode === "scroll") {
      els.scrollView.style.display = "block";
      els.scrollBlock.textContent = els.textInput.value;
      els.scrollBlock.style.transform = "translateY(0px)";
      const height = els.scrollBlock.getBoundingClientRect().height;
      render(await api("/api/session/distance", { distance: height }));
    }
  }

  async function togglePlay() {
    try {
      const s = state.session;
      if (s && s.is_playing) {
        render(await api("/api/session/pause", {}));
        return;
      }
      if (!s || s.state !== "paused" || needsConfigure()) {
        await configure();
      }
      render(await api("/api/session/start", {}));
      setStatus("Reading...");
    } catch (err) {
      setStatus(err.message || String(err), true);
    }
  }

  async function resetSession() {
    try {
      render(await api("/api/session/reset", {}));
      setStatus("Ready.");
    } catch (err) {
      setStatus(err.message || String(err), true);
    }
  }

  async function loadFile() {
    const file = els.fileInput.files && els.fileInput.files[0];
    if (!file) return setStatus("Choose a PDF or EPUB first.", true);
    if (!/\.(pdf|epub)$/i.test(file.name)) return setStatus("Unsupported file type. Use PDF or EPUB.", true);

    setStatus("Uploading and extracting text...");
    const form = new FormData();
    form.append("file", file);

    try {
      const res = await fetch("/api/extract", { method: "POST", body: form });
      const data = await res.json();
      if (!res.ok || !data.ok) throw new Error(data.error || "Extraction failed");
      els.textInput.value = data.text || "";
      await resetSession();
      setStatus(`Loaded ${data.filename} (${(data.word_count || 0).toLocaleString()} words)`);
    } catch (err) {
      console.error(err);
      setStatus(`Load failed: ${err.message || err}`, true);
    }
  }

  els.playBtn.addEventListener("click", togglePlay);
  els.resetBtn.addEventListener("click", resetSession);
  els.loadBtn.addEventListener("click", loadFile);

  document.addEventListener("keydown", (e) => {
    if (e.target === els.textInput || e.target === els.wpmInput) return;
    if (e.code === "Space") {
      e.preventDefault();
      togglePlay();
    } else if (e.key.toLowerCase() === "r") {
      e.preventDefault();
      resetSession();
    }
  });

  poll();
})();
</script>
</body>
</html>
"""


def engine_response(fn: Callable[[SessionController], Any]):
    runner = get_runner()
    try:
        runner.call(fn)
    except InvalidInput as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    except concurrent.futures.TimeoutError:
        logger.warning("Engine did not answer within %.1f s", ENGINE_CALL_TIMEOUT_S)
        return jsonify({"ok": False, "error": "Reading engine is not responding"}), 503
    data = runner.snapshot()
    data["ok"] = True
    return jsonify(data)


@app.route("/", methods=["GET"])
def index():
    return render_template_string(HTML_PAGE, default_wpm=DEFAULT_RATE_WPM, chunk_size=CHUNK_SIZE)


@app.route("/api/extract", methods=["POST"])
def api_extract():
    if "file" not in request.files:
        return jsonify({"ok": False, "error": "No file uploaded"}), 400

    f = request.files["file"]
    if not f or not f.filename:
        return jsonify({"ok": False, "error": "Missing file"}), 400

    filename = f.filename
    if not allowed_file(filename):
        return jsonify({"ok": False, "error": "Unsupported file type (use .pdf or .epub)"}), 400

    suffix = Path(filename).suffix.lower()

    try:
        with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
            temp_path = tmp.name
            f.save(temp_path)

        try:
            text = extract_text_from_file(temp_path)
        finally:
            os.unlink(temp_path)

        if not text.strip():
            return jsonify({"ok": False, "error": "No extractable text found. (Scanned PDF likely needs OCR.)"}), 400

        return jsonify(build_payload(text, filename))

    except Exception as e:
        logger.warning("Extraction failed for %s: %s", filename, e, exc_info=True)
        return jsonify({"ok": False, "error": str(e)}), 500


@app.route("/api/session", methods=["GET"])
def api_session():
    data = get_runner().snapshot()
    data["ok"] = True
    return jsonify(data)


@app.route("/api/session/configure", methods=["POST"])
def api_configure():
    body = request.get_json(silent=True) or {}
    text = body.get("text", "")
    wpm = body.get("wpm", DEFAULT_RATE_WPM)
    mode = body.get("mode", "chunk")
    return engine_response(lambda c: c.configure(text, wpm, mode))


@app.route("/api/session/distance", methods=["POST"])
def api_distance():
    body = request.get_json(silent=True) or {}
    distance = body.get("distance")
    return engine_response(lambda c: c.set_total_distance(distance))


@app.route("/api/session/start", methods=["POST"])
def api_start():
    return engine_response(lambda c: c.start())


@app.route("/api/session/pause", methods=["POST"])
def api_pause():
    return engine_response(lambda c: c.pause())


@app.route("/api/session/reset", methods=["POST"])
def api_reset():
    return engine_response(lambda c: c.reset())


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Local speed reading trainer (chunk and scroll pacing)")
    parser.add_argument("--host", default=os.environ.get("SPEEDPACE_HOST", DEFAULT_HOST))
    parser.add_argument("--port", type=int, default=int(os.environ.get("SPEEDPACE_PORT", DEFAULT_PORT)))
    parser.add_argument(
        "--low-refresh", action="store_true", default=False,
        help="Scroll at ~30 fps instead of ~60 fps (constrained devices)",
    )
    parser.add_argument("--debug", action="store_true", default=False, help="Verbose engine logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = parse_args(argv)

    level = "DEBUG" if args.debug else os.environ.get("SPEEDPACE_LOG_LEVEL", "INFO")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    app.config["SPEEDPACE_HIGH_REFRESH"] = env_flag("SPEEDPACE_HIGH_REFRESH", True) and not args.low_refresh

    print(f"Starting speedpace on http://{args.host}:{args.port} (max {MAX_RATE_WPM} WPM)")
    try:
        app.run(host=args.host, port=args.port, debug=False)
    finally:
        shutdown_runner()


if __name__ == "__main__":
    main()
