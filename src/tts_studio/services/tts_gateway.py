from __future__ import annotations

import asyncio
import html
import json
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, Response

from tts_studio.config import CLOUD_FORMATS, CLOUD_VOICES, AppSettings
from tts_studio.core.logging import configure_logging, get_logger
from tts_studio.forwarder import ForwarderConfig, SpeechForwarder
from tts_studio.startup.checks import CheckStatus, run_startup_checks


def _html_page(*, title: str) -> str:
    # Single-file, dependency-free page (no external assets).
    # Browser mode uses the platform speechSynthesis API; cloud mode posts to /api/tts.
    voice_opts = "\n".join(f'<option value="{v}">{v}</option>' for v in CLOUD_VOICES)
    format_opts = "\n".join(f'<option value="{f}">{f}</option>' for f in CLOUD_FORMATS)
    return (
        _PAGE.replace("__TITLE__", html.escape(title))
        .replace("__CLOUD_VOICES__", voice_opts)
        .replace("__FORMATS__", format_opts)
        .replace("__FORMAT_LIST__", json.dumps(CLOUD_FORMATS))
    )


_PAGE = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>__TITLE__</title>
    <style>
      * { box-sizing: border-box; }
      body { margin: 0; font-family: -apple-system, "Segoe UI", Roboto, Inter, Arial, sans-serif;
             background: #f8fafc; color: #0f172a; }
      .wrap { max-width: 1100px; margin: 0 auto; padding: 32px 20px; }
      .grid { display: grid; grid-template-columns: 1fr; gap: 20px; }
      @media (min-width: 960px) { .grid { grid-template-columns: 1fr 1fr; } }
      .card { background: #fff; border: 1px solid #e2e8f0; border-radius: 14px; padding: 18px; }
      label, .label { display: block; font-size: 13px; font-weight: 600; margin: 10px 0 6px; }
      textarea, select { width: 100%; border: 1px solid #cbd5e1; border-radius: 10px; padding: 10px; font: inherit; }
      textarea { min-height: 320px; font-family: ui-monospace, Menlo, monospace; }
      input[type=range] { width: 100%; }
      .row { display: flex; gap: 10px; margin-top: 14px; }
      .btn { border: 1px solid #cbd5e1; background: #fff; border-radius: 10px; padding: 10px 14px;
             font-weight: 600; cursor: pointer; text-decoration: none; color: inherit; }
      .btn.primary, .btn.active { background: #2563eb; border-color: #2563eb; color: #fff; }
      .btn[disabled], .btn.off { opacity: 0.5; pointer-events: none; }
      .muted { font-size: 12px; color: #64748b; margin-top: 6px; }
      audio { width: 100%; margin-top: 12px; }
      .hidden { display: none; }
    </style>
  </head>
  <body>
    <div class="wrap">
      <h1>__TITLE__</h1>
      <div class="grid">
        <section class="card">
          <label for="script">Script</label>
          <textarea id="script">Welcome to Pro TTS Studio. Type your script, adjust voice and settings, then click Speak.</textarea>
        </section>
        <section class="card">
          <span class="label">Backend</span>
          <div class="row">
            <button class="btn active" id="mode-browser">Browser</button>
            <button class="btn" id="mode-cloud">Cloud (OpenAI)</button>
          </div>
          <div class="muted">Cloud requires OPENAI_API_KEY on the server.</div>

          <div id="browser-panel">
            <label for="voice">Voice</label>
            <select id="voice"><option value="">No voices available</option></select>
            <label>Rate: <span id="rate-v">1.00</span></label>
            <input id="rate" type="range" min="0.5" max="2" step="0.01" value="1" />
            <label>Pitch: <span id="pitch-v">1.00</span></label>
            <input id="pitch" type="range" min="0" max="2" step="0.01" value="1" />
            <label>Volume: <span id="volume-v">1.00</span></label>
            <input id="volume" type="range" min="0" max="1" step="0.01" value="1" />
            <div class="row">
              <button class="btn primary" id="speak">Speak</button>
              <button class="btn" id="stop" disabled>Stop</button>
            </div>
          </div>

          <div id="cloud-panel" class="hidden">
            <label for="cloud-voice">Voice</label>
            <select id="cloud-voice">__CLOUD_VOICES__</select>
            <label for="format">Format</label>
            <select id="format">__FORMATS__</select>
            <div class="row">
              <button class="btn primary" id="generate">Generate &amp; Play</button>
              <a class="btn" id="download">Download</a>
            </div>
            <audio id="player" controls></audio>
          </div>
        </section>
      </div>
    </div>
    <script>
      const $ = (id) => document.getElementById(id);
      const synth = window.speechSynthesis;
      const formats = __FORMAT_LIST__;
      let voices = [];
      let selectedVoice = "";
      let generating = false;

      function setMode(mode) {
        $("mode-browser").classList.toggle("active", mode === "browser");
        $("mode-cloud").classList.toggle("active", mode === "cloud");
        $("browser-panel").classList.toggle("hidden", mode !== "browser");
        $("cloud-panel").classList.toggle("hidden", mode !== "cloud");
      }
      $("mode-browser").onclick = () => setMode("browser");
      $("mode-cloud").onclick = () => setMode("cloud");

      function populateVoices() {
        if (!synth) return;
        voices = synth.getVoices();
        const still = voices.find((v) => v.name === selectedVoice);
        if (!still && voices.length) {
          const en = voices.find((v) => v.lang.toLowerCase().startsWith("en"));
          selectedVoice = (en || voices[0]).name;
        }
        const sel = $("voice");
        sel.innerHTML = voices.length
          ? voices.map((v) => `<option value="${v.name}">${v.name} (${v.lang})</option>`).join("")
          : '<option value="">No voices available</option>';
        sel.value = selectedVoice;
      }
      if (synth) {
        populateVoices();
        synth.addEventListener("voiceschanged", populateVoices);
      }
      $("voice").onchange = (e) => { selectedVoice = e.target.value; };
      for (const id of ["rate", "pitch", "volume"]) {
        $(id).oninput = () => { $(id + "-v").textContent = parseFloat($(id).value).toFixed(2); };
      }

      function setSpeaking(on) {
        $("speak").disabled = on;
        $("stop").disabled = !on;
        $("speak").textContent = on ? "Speaking..." : "Speak";
      }
      function stopSpeaking() {
        if (!synth) return;
        synth.cancel();
        setSpeaking(false);
      }
      $("stop").onclick = stopSpeaking;
      $("speak").onclick = () => {
        const text = $("script").value;
        if (!text.trim() || !synth) return;
        stopSpeaking();
        const utter = new SpeechSynthesisUtterance(text);
        const voice = voices.find((v) => v.name === selectedVoice);
        if (voice) utter.voice = voice;
        utter.rate = parseFloat($("rate").value);
        utter.pitch = parseFloat($("pitch").value);
        utter.volume = parseFloat($("volume").value);
        utter.onstart = () => setSpeaking(true);
        utter.onend = () => setSpeaking(false);
        utter.onerror = () => setSpeaking(false);
        synth.speak(utter);
      };

      $("generate").onclick = async () => {
        const text = $("script").value;
        if (!text.trim() || generating) return;
        const format = $("format").value;
        generating = true;
        $("generate").disabled = true;
        $("generate").textContent = "Generating...";
        $("download").classList.add("off");
        try {
          const res = await fetch("/api/tts", {
            method: "POST",
            headers: { "Content-Type": "application/json" },
            body: JSON.stringify({ text, voice: $("cloud-voice").value, format }),
          });
          if (!res.ok) {
            const msg = await res.text();
            throw new Error(msg || "Cloud TTS failed");
          }
          const blob = await res.blob();
          const url = URL.createObjectURL(blob);
          $("player").src = url;
          await $("player").play().catch(() => {});
          $("download").href = url;
          $("download").download = `tts-${Date.now()}.${formats.includes(format) ? format : "mp3"}`;
        } catch (err) {
          console.error(err);
          alert(err.message);
        } finally {
          generating = false;
          $("generate").disabled = false;
          $("generate").textContent = "Generate & Play";
          $("download").classList.remove("off");
        }
      };
    </script>
  </body>
</html>
"""


def create_app(
    settings: AppSettings,
    *,
    forwarder: Optional[SpeechForwarder] = None,
) -> FastAPI:
    """
    Build the gateway app. The forwarder config is resolved once here and
    never re-read from the environment per request.
    """
    log = get_logger(service="tts_gateway")
    fwd = forwarder or SpeechForwarder(ForwarderConfig.from_settings(settings))

    app = FastAPI(title=settings.ui.title)
    app.state.forwarder = fwd

    @app.on_event("startup")
    async def _startup() -> None:
        results = run_startup_checks(config=fwd.config)
        if any(r.status == CheckStatus.FAIL for r in results):
            log.error("startup_checks_failed")

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return _html_page(title=settings.ui.title)

    @app.get("/healthz")
    async def healthz() -> Dict[str, Any]:
        return {"status": "ok", "cloud_configured": fwd.config.configured}

    @app.post("/api/tts")
    async def tts(request: Request) -> Response:
        body = await request.body()
        return await fwd.forward(body)

    return app


async def run_tts_gateway(settings: Optional[AppSettings] = None) -> None:
    """
    Serve the studio page and POST /api/tts (no auth, bind to LAN/localhost by config).
    """
    settings = settings or AppSettings()
    configure_logging(settings.log_level)
    log = get_logger(service="tts_gateway")

    app = create_app(settings)

    config = uvicorn.Config(
        app,
        host=str(settings.ui.bind_host),
        port=int(settings.ui.port),
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)
    log.info("gateway_listening", host=settings.ui.bind_host, port=settings.ui.port)
    await server.serve()


def main() -> int:
    asyncio.run(run_tts_gateway())
    return 0
