# main.py
import cv2
import time
import yaml
import argparse
import numpy as np
from collections import deque

from pose_sync.common.config import load_config
from pose_sync.common.errors import ConfigError, ModelLoadFailure, PoseSyncError, SourceUnavailable
from pose_sync.common.logging_setup import configure_logging
from pose_sync.common.models import VideoHandle
from pose_sync.pipeline.pose_sync_pipeline import PoseSyncPipeline
from pose_sync.playback.playback_clock import PlaybackClock
from pose_sync.playback.playback_controller import PlaybackController
from pose_sync.processing.model_runner import ModelRunner
from pose_sync.visualization.overlay import OverlaySink

SEEK_STEP_MS = 5000

def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Play a video file or live camera with pose estimates kept in sync with playback.")
    parser.add_argument("--source", default="0", help="video file or URL, or a camera index with --live")
    parser.add_argument("--live", action="store_true", help="treat the source as a live capture device")
    parser.add_argument("--config", default="config.yaml", help="path to the YAML configuration")
    parser.add_argument("--paused", action="store_true", help="open the video paused")
    return parser.parse_args(argv)

def make_handle(args) -> VideoHandle:
    uri = int(args.source) if args.live and args.source.isdigit() else args.source
    return VideoHandle(uri=uri, is_live=args.live)

def describe_session_error(error: PoseSyncError, handle: VideoHandle) -> str:
    if isinstance(error, SourceUnavailable):
        return (f"ERROR: Cannot open video source '{handle.uri}'. "
                "Check that the file exists or that the camera is connected and not in use.")
    if isinstance(error, ModelLoadFailure):
        cause = error.__cause__ or error
        return f"ERROR: The pose model failed to load ({cause}). Check the 'model' section of the config."
    return f"ERROR: {error}"

def main(argv=None):
    """
    The main application loop.
    Loads the model, opens the source, keeps pose overlays in step with playback
    and shuts everything down gracefully.
    """
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except (IOError, yaml.YAMLError, ConfigError) as e:
        print(f"ERROR: Failed to load configuration '{args.config}'. {e}")
        return 2

    configure_logging(config['logging']['level'])

    session_errors = []
    pose_times = deque(maxlen=30)
    last_result = None

    runner = ModelRunner(config['model'])
    def on_model_loaded(future):
        if future.exception() is not None:
            session_errors.append(future.exception())
    runner.load().add_done_callback(on_model_loaded)

    controller = PlaybackController()
    clock = PlaybackClock(controller)
    overlay = OverlaySink(config['visualization'])
    pipeline = PoseSyncPipeline(
        runner, controller.events, overlay,
        config=config['pipeline'],
        source_config=config['source'],
        on_session_error=session_errors.append,
        on_source_opened=lambda handle, source: controller.on_decoder_status(
            handle.source_id, 0, source.duration_ms),
        on_end_of_stream=controller.on_end_of_stream,
    )
    window_name = config['visualization']['window_name']
    handle = make_handle(args)

    try:
        controller.set_source(handle)
        if not args.paused:
            controller.play()

        while controller.state.source is not None:
            clock.tick()
            pipeline.pump()

            if session_errors:
                print(describe_session_error(session_errors[0], handle))
                return 1

            # --- Pose rate over the last results ---
            latest = overlay.latest()
            if latest is not None and latest[1] is not last_result:
                last_result = latest[1]
                pose_times.append(time.perf_counter())
            pose_fps = 0.0
            if len(pose_times) > 1 and pose_times[-1] > pose_times[0]:
                pose_fps = (len(pose_times) - 1) / (pose_times[-1] - pose_times[0])

            output_frame = overlay.render(controller.state, pose_fps)
            if output_frame is None:
                output_frame = np.zeros((360, 640, 3), dtype=np.uint8)
                cv2.putText(output_frame, f"{controller.state.status.value}: waiting for pose...",
                            (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (240, 240, 240), 2, cv2.LINE_AA)
            cv2.imshow(window_name, output_frame)

            key = cv2.waitKey(5) & 0xFF
            if key == ord('q'):
                print("Shutdown signal received.")
                break
            elif key == ord(' '):
                controller.toggle()
            elif key == ord('a'):
                controller.seek(controller.state.position_ms - SEEK_STEP_MS)
            elif key == ord('d'):
                controller.seek(controller.state.position_ms + SEEK_STEP_MS)
            elif key == ord('c'):
                controller.close()
                overlay.clear()
        return 0

    except KeyboardInterrupt:
        print("Interrupted.")
        return 130
    finally:
        pipeline.close()
        runner.close()
        cv2.destroyAllWindows()
        print("Application terminated.")

if __name__ == "__main__":
    raise SystemExit(main())
