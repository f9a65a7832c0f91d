"""Writes downloaded clip audio (and placeholders) to disk."""
import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiofiles


class ArtifactWriter:
    """The only local side effect of a clip request: the audio file at its target path."""

    def __init__(self, placeholder_file: Optional[Path] = None):
        """
        Args:
            placeholder_file: Audio copied to a job's target path while the real clip is generated.
        """
        self.placeholder_file = placeholder_file
        self.logger = logging.getLogger(__name__)

    async def write(self, path: Path, data: bytes):
        """Writes `data` to `path`, creating the parent directory if needed."""
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + '.part')
        async with aiofiles.open(tmp_path, 'wb') as f_out:
            await f_out.write(data)
        await asyncio.to_thread(tmp_path.replace, path)
        self.logger.info(f"Wrote {len(data)} bytes to {path}")

    async def write_placeholder(self, path: Path) -> bool:
        """Copies the placeholder audio to `path`. Returns False when none is configured."""
        if not self.placeholder_file:
            return False
        async with aiofiles.open(self.placeholder_file, 'rb') as f_in:
            data = await f_in.read()
        await self.write(path, data)
        return True
