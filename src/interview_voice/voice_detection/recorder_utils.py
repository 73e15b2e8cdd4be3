"""Helpers for driving a blocking AudioRecorder from asyncio code."""

import asyncio

from .interfaces import AudioRecorder
from .logging_utils import get_logger

logger = get_logger(__name__)


async def start_recording(recorder: AudioRecorder) -> None:
    """
    Open the recorder on a worker thread without leaking it on cancellation.

    A worker thread cannot be interrupted, so when the calling task is
    cancelled mid-start this waits for the thread to finish and closes
    whatever it opened before re-raising the cancellation.

    Args:
        recorder: Capture session to open

    Raises:
        Whatever start_recording() raises, or asyncio.CancelledError
    """
    start = asyncio.ensure_future(asyncio.to_thread(recorder.start_recording))
    try:
        await asyncio.shield(start)
    except asyncio.CancelledError:
        try:
            await start
        except Exception as e:
            logger.debug(f"Recorder start failed while cancelling: {e}")
        else:
            logger.debug("🛑 Closing capture opened during cancellation")
            await asyncio.to_thread(recorder.stop_recording)
        raise
