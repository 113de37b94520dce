"""
Video thumbnail extraction using FFmpeg
"""

import asyncio
import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

_SAFE_SEGMENT = re.compile(r"[A-Za-z0-9_-][A-Za-z0-9_.-]*")


class ThumbnailService:
    """Downloads a video, grabs the frame at 0.5s and stores it as a 400px wide jpeg"""
    
    DOWNLOAD_TIMEOUT = 120.0
    FFMPEG_TIMEOUT = 60.0
    
    def __init__(
        self,
        output_dir: Optional[str] = None,
        base_url: Optional[str] = None,
        ffmpeg_binary: Optional[str] = None
    ):
        self.output_dir = Path(output_dir or settings.THUMBNAIL_DIR)
        self.base_url = (base_url or settings.THUMBNAIL_BASE_URL).rstrip("/")
        self.ffmpeg_binary = ffmpeg_binary or settings.FFMPEG_BINARY
    
    async def is_available(self) -> bool:
        """Check if FFmpeg can be executed"""
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_binary, "-version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            return await process.wait() == 0
        except OSError:
            return False
    
    async def generate(self, video_url: str, user_id: str, generation_id: str) -> str:
        """
        Generate and store a thumbnail.
        
        Returns:
            Public URL of the stored thumbnail
            
        Raises:
            ValueError: If user_id or generation_id is not a plain path segment
            RuntimeError: If download or frame extraction fails
        """
        for segment in (user_id, generation_id):
            if not _SAFE_SEGMENT.fullmatch(segment or ""):
                raise ValueError(f"Unsafe thumbnail path segment: {segment!r}")
        
        with tempfile.TemporaryDirectory(prefix="thumb-") as tmp:
            video_path = Path(tmp) / "video.mp4"
            thumb_path = Path(tmp) / "thumb.jpg"
            
            await self._download(video_url, video_path)
            await self._extract_frame(video_path, thumb_path)
            
            target = self.output_dir / user_id / f"{generation_id}.jpg"
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(thumb_path), target)
        
        return f"{self.base_url}/{user_id}/{generation_id}.jpg"
    
    async def _download(self, url: str, path: Path) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.DOWNLOAD_TIMEOUT, follow_redirects=True) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(path, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
        except httpx.HTTPError as e:
            raise RuntimeError(f"Failed to download video: {e}") from e
    
    async def _extract_frame(self, video_path: Path, thumb_path: Path) -> None:
        process = await asyncio.create_subprocess_exec(
            self.ffmpeg_binary,
            "-y",
            "-ss", "0.5",
            "-i", str(video_path),
            "-vframes", "1",
            "-vf", "scale=400:-1",
            "-q:v", "2",
            str(thumb_path),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.FFMPEG_TIMEOUT)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RuntimeError("FFmpeg timed out extracting thumbnail")
        
        if process.returncode != 0 or not thumb_path.exists():
            tail = (stderr or b"").decode(errors="replace")[-300:]
            raise RuntimeError(f"FFmpeg failed with code {process.returncode}: {tail}")
