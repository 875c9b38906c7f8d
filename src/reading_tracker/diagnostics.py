"""
Helper routines for validating the microphone and the speech recognizer outside
a reading session.
"""

import asyncio
import sys

from reading_tracker.audio.engine import SoundDeviceInputEngine
from reading_tracker.audio.levels import calculate_rms, normalized_level
from reading_tracker.audio.session import SoundDeviceAudioSession
from reading_tracker.config import AUDIO_BLOCK_SIZE
from reading_tracker.transcription.capture_graph import AudioCaptureGraph

METER_WIDTH = 30


def _meter(level: float) -> str:
    filled = int(round(level * METER_WIDTH))
    return "#" * filled + "." * (METER_WIDTH - filled)


async def test_audio_capture(duration: float = 5.0):
    """Capture audio at the device's native rate and print a level meter."""
    print("\n=== Audio Capture Test ===\n")

    session = SoundDeviceAudioSession()
    route = await asyncio.to_thread(session.activate)
    engine = SoundDeviceInputEngine(route)
    fmt = engine.input_format()
    queue: asyncio.Queue = asyncio.Queue(maxsize=64)
    loop = asyncio.get_running_loop()

    def _enqueue(block):
        if not queue.full():
            queue.put_nowait(block)

    def _on_block(block):
        if not loop.is_closed():
            loop.call_soon_threadsafe(_enqueue, block)

    print(f"Device: {route.name}")
    print(f"Native format: {fmt.sample_rate} Hz, {fmt.channels} channel(s), float32")
    print(f"\nCapturing audio for {duration:.0f} seconds...")
    print("(Speak into your microphone or make some noise)\n")

    block_count = 0
    peak_rms = 0.0
    engine.install_tap(AUDIO_BLOCK_SIZE, fmt, _on_block)
    try:
        engine.start()
        start_time = loop.time()
        while loop.time() - start_time < duration:
            try:
                block = await asyncio.wait_for(queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                print("Warning: No audio data received (timeout)")
                break
            block_count += 1
            peak_rms = max(peak_rms, calculate_rms(block))
            if block_count % 5 == 0:
                print(f"\r[{_meter(normalized_level(block))}]", end="", flush=True)

    except KeyboardInterrupt:
        print("\nTest interrupted")

    finally:
        engine.stop()
        engine.remove_tap()
        session.deactivate()

        print("\n\n=== Test Complete ===")
        print(f"Total blocks: {block_count}")
        print(f"Peak RMS: {peak_rms:.4f}")


async def test_recognizer(duration: float = 15.0):
    """Run the capture graph alone and print the transcript as it grows."""
    print("\n=== Speech Recognizer Test ===\n")

    graph = AudioCaptureGraph()
    last_printed = ""

    def _on_change(name: str) -> None:
        nonlocal last_printed
        if name == "transcript" and graph.transcript != last_printed:
            last_printed = graph.transcript
            print(f"> {last_printed}")
        elif name == "error_message" and graph.error_message:
            print(f"! {graph.error_message}", file=sys.stderr)

    graph.add_observer(_on_change)
    try:
        status = await graph.request_permissions()
        if not status.granted:
            print(f"Permissions missing: {graph.error_message}", file=sys.stderr)
            return
        if not await graph.start():
            print(f"Recognizer failed to start: {graph.error_message}", file=sys.stderr)
            return
        print(f"Listening for {duration:.0f} seconds...\n")
        await asyncio.sleep(duration)

    except KeyboardInterrupt:
        print("\nTest interrupted")

    finally:
        await graph.shutdown()
        print("\n=== Test Complete ===")
        print(f"Transcript: {graph.transcript or '(empty)'}")


if __name__ == "__main__":
    print(
        "Run individual tests via `reading-tracker test-audio` or "
        "`reading-tracker test-recognizer`."
    )
