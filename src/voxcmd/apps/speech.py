"""Text-to-speech through the macOS ``say`` command."""

import asyncio
import shutil

from voxcmd.core.env import LOGGER


class SaySpeaker:
    """Speaker backed by ``say``; silently unavailable elsewhere."""

    def __init__(self, voice: str | None = None) -> None:
        self.voice = voice
        self._say = shutil.which("say")

    @property
    def available(self) -> bool:
        return self._say is not None

    async def speak(self, text: str) -> None:
        if not text or self._say is None:
            return
        argv = [self._say]
        if self.voice:
            argv += ["-v", self.voice]
        argv.append(text)
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        code = await process.wait()
        if code != 0:
            LOGGER.warning("say exited with code %d", code)
