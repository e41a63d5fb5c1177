from __future__ import annotations

from tts_studio.services.tts_gateway import main as gateway_main


def main() -> int:
    return gateway_main()
