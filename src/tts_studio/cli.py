from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from tts_studio.client.errors import StudioClientError
from tts_studio.client.local import LocalSpeechBackend, UtteranceSettings
from tts_studio.client.studio import BackendMode, SynthesisClient
from tts_studio.config import CLOUD_FORMATS, AppSettings
from tts_studio.core.logging import configure_logging, get_logger
from tts_studio.forwarder import ForwarderConfig
from tts_studio.main import main
from tts_studio.startup.checks import CheckStatus, run_startup_checks

app = typer.Typer(no_args_is_help=True)


@app.command()
def serve() -> None:
    """Run the TTS gateway (studio page + POST /api/tts)."""
    raise SystemExit(main())


@app.command()
def speak(
    text: str = typer.Argument(..., help="Text to speak"),
    backend: BackendMode = typer.Option(BackendMode.LOCAL, "--backend", help="local (on-device) or cloud (gateway)"),
    voice: str = typer.Option(None, "--voice", help="Local voice id, or cloud voice (default: alloy)"),
    audio_format: str = typer.Option("mp3", "--format", help="Cloud audio format: %s" % ", ".join(CLOUD_FORMATS)),
    rate: float = typer.Option(1.0, "--rate", min=0.5, max=2.0, help="Local speech rate multiplier"),
    pitch: float = typer.Option(1.0, "--pitch", min=0.0, max=2.0, help="Local speech pitch multiplier"),
    volume: float = typer.Option(1.0, "--volume", min=0.0, max=1.0, help="Local speech volume"),
    output: Path = typer.Option(None, "--output", help="Directory for cloud clips (default: TTS_STUDIO_DOWNLOAD_DIR)"),
    play: bool = typer.Option(False, "--play", help="Open the saved cloud clip with the default player"),
) -> None:
    """
    Speak TEXT on this device, or generate it through the gateway and save the clip.
    """
    settings = AppSettings()
    configure_logging(settings.log_level)
    log = get_logger(service="cli")

    client = SynthesisClient.from_settings(settings, mode=backend)

    async def run_once() -> None:
        if backend == BackendMode.CLOUD:
            clip = await client.speak(text, cloud_voice=voice or "alloy", audio_format=audio_format)
            if clip is None:
                return
            path = clip.save(output or Path(settings.client.download_dir))
            log.info("clip_saved", path=str(path), content_type=clip.content_type, bytes=len(clip.data))
            typer.echo(str(path))
            if play:
                typer.launch(str(path))
            return

        await client.speak(
            text,
            utterance=UtteranceSettings(rate=rate, pitch=pitch, volume=volume, voice_id=voice),
        )

    try:
        asyncio.run(run_once())
    except StudioClientError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        client.stop()
        raise typer.Exit(130)


@app.command()
def voices() -> None:
    """List on-device voices."""
    settings = AppSettings()
    configure_logging(settings.log_level)

    try:
        found = LocalSpeechBackend().voices()
    except StudioClientError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    if not found:
        typer.echo("No voices available")
        return
    for v in found:
        typer.echo("%s | %s" % (v.id, v.label))


@app.command()
def check() -> None:
    """Run startup checks against the current configuration."""
    settings = AppSettings()
    configure_logging(settings.log_level)

    results = run_startup_checks(config=ForwarderConfig.from_settings(settings))
    for r in results:
        color = {
            CheckStatus.OK: typer.colors.GREEN,
            CheckStatus.WARN: typer.colors.YELLOW,
            CheckStatus.FAIL: typer.colors.RED,
        }[r.status]
        typer.secho("%-16s %-5s %s" % (r.name, r.status.value, r.details), fg=color)
    if any(r.status == CheckStatus.FAIL for r in results):
        raise typer.Exit(1)
