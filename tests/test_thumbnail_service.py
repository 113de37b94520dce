import pytest

from app.services.thumbnail_service import ThumbnailService


@pytest.mark.asyncio
async def test_missing_ffmpeg_is_unavailable(tmp_path):
    service = ThumbnailService(output_dir=str(tmp_path), ffmpeg_binary=str(tmp_path / "no-ffmpeg"))
    assert await service.is_available() is False


@pytest.mark.asyncio
async def test_download_failure_raises_and_writes_nothing(tmp_path):
    service = ThumbnailService(output_dir=str(tmp_path / "thumbs"), base_url="/thumbnails")

    with pytest.raises(RuntimeError, match="Failed to download video"):
        await service.generate("http://127.0.0.1:9/video.mp4", "user_1", "gen_1")

    assert not (tmp_path / "thumbs").exists()


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id", ["../..", "a/b", "..", "", "user\n"])
async def test_unsafe_user_id_is_rejected_before_download(tmp_path, user_id):
    service = ThumbnailService(output_dir=str(tmp_path / "thumbs"), base_url="/thumbnails")

    with pytest.raises(ValueError, match="Unsafe thumbnail path segment"):
        await service.generate("http://127.0.0.1:9/video.mp4", user_id, "gen_1")

    assert list(tmp_path.iterdir()) == []
