"""CLI entry point for screenrec."""

import logging
import signal
import sys
import threading

import click

from screenrec import __version__
from screenrec.constants import DURATION_CHOICES, LOOP_CHOICES, VALID_VIDEO_FORMATS
from screenrec.errors import (
    FinalizeFailure,
    PermissionDeniedError,
    RecorderFailure,
    UnsupportedError,
)

_ERROR_MESSAGES = (
    (UnsupportedError, "Screen recording is not supported here (ffmpeg with a screen grabber is required)"),
    (PermissionDeniedError, "Screen capture was cancelled or denied"),
    (RecorderFailure, "Recording failed"),
    (FinalizeFailure, "Could not assemble the recording"),
)


def _describe_error(err) -> str:
    for cls, message in _ERROR_MESSAGES:
        if isinstance(err, cls):
            return f"{message}: {err}"
    return str(err)


def _create_source(cfg):
    """Create the capture backend from the ``capture`` config section."""
    from screenrec.recorder.ffmpeg_source import FfmpegCaptureSource

    return FfmpegCaptureSource(
        ffmpeg=cfg.capture.ffmpeg,
        framerate=cfg.capture.framerate,
        display=cfg.capture.display,
    )


def _format_seconds(seconds) -> str:
    m, s = divmod(int(seconds), 60)
    h, m = divmod(m, 60)
    return f"{h:02d}:{m:02d}:{s:02d}" if h else f"{m:02d}:{s:02d}"


@click.group()
@click.version_option(version=__version__, prog_name="screenrec")
@click.option("--verbose", "-v", is_flag=True, help="Log recorder internals to stderr.")
def main(verbose):
    """Record the screen for a fixed time or keep a rolling window."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@main.command()
@click.option("--duration", "-d", type=click.Choice([str(d) for d in DURATION_CHOICES]), default=None,
              help="Minutes to record in fixed mode.")
@click.option("--loop/--fixed", "loop", default=None,
              help="Keep only the most recent seconds (loop) or record a fixed duration.")
@click.option("--loop-seconds", type=click.IntRange(min=1), default=None,
              help=f"Seconds kept in loop mode (usually {', '.join(map(str, LOOP_CHOICES))}).")
@click.option("--format", "video_format", type=click.Choice(VALID_VIDEO_FORMATS), default=None,
              help="Preferred container; falls back if unavailable.")
@click.option("--audio/--no-audio", default=None, help="Capture system audio too.")
@click.option("--output-dir", "-o", type=click.Path(file_okay=False), default=None,
              help="Directory to save the recording in.")
def record(duration, loop, loop_seconds, video_format, audio, output_dir):
    """Record the screen until the duration is reached or Ctrl+C.

    In loop mode only the last --loop-seconds are kept when you stop.
    Ctrl+Z pauses and resumes.
    """
    from pathlib import Path

    from screenrec.library import RecordingLibrary
    from screenrec.paths import ensure_dirs, load_config
    from screenrec.recorder import RecordingOptions, RecordingStatus, ScreenRecorder

    cfg, data_dir, _ = load_config()
    recordings_dir = Path(output_dir) if output_dir else ensure_dirs(data_dir)
    library = RecordingLibrary(recordings_dir)

    rec = cfg.recording
    if loop is None:
        loop = rec.mode == "loop"
    try:
        options = RecordingOptions(
            duration=int(duration) if duration else rec.duration_minutes,
            include_audio=rec.include_audio if audio is None else audio,
            video_format=video_format or rec.video_format,
            mode="loop" if loop else "fixed",
            loop_duration=loop_seconds or rec.loop_seconds,
        )
    except ValueError as e:
        raise click.ClickException(str(e))

    done = threading.Event()
    stop_event = threading.Event()
    toggle_event = threading.Event()
    outcome = {}

    def on_complete(result):
        outcome["result"] = result
        done.set()

    def on_error(err):
        outcome["error"] = err
        done.set()

    recorder = ScreenRecorder(
        _create_source(cfg),
        options,
        on_complete=on_complete,
        on_error=on_error,
        bitrate=cfg.capture.video_bitrate,
    )

    interrupt_count = 0
    original_int = signal.getsignal(signal.SIGINT)
    original_tstp = signal.getsignal(signal.SIGTSTP) if hasattr(signal, "SIGTSTP") else None

    def handle_sigint(sig, frame):
        nonlocal interrupt_count
        interrupt_count += 1
        if interrupt_count >= 2:
            click.echo("\nForced exit.")
            recorder.close()
            sys.exit(1)
        click.echo("\nStopping recording...")
        stop_event.set()

    def handle_sigtstp(sig, frame):
        toggle_event.set()

    signal.signal(signal.SIGINT, handle_sigint)
    if original_tstp is not None:
        signal.signal(signal.SIGTSTP, handle_sigtstp)

    try:
        with recorder:
            click.echo("Select the screen to record...")
            if not recorder.start():
                raise click.ClickException(_describe_error(recorder.error))

            if options.is_loop:
                click.echo(f"Recording in loop mode, keeping the last {options.loop_duration}s "
                           f"({recorder.mime_type}). Ctrl+C to stop.")
            else:
                click.echo(f"Recording for {options.duration} min ({recorder.mime_type}). Ctrl+C to stop.")

            while not done.is_set():
                if stop_event.is_set():
                    recorder.stop()
                if toggle_event.is_set():
                    toggle_event.clear()
                    if recorder.status == RecordingStatus.PAUSED:
                        recorder.resume()
                    else:
                        recorder.pause()

                if recorder.status == RecordingStatus.PAUSED:
                    led = click.style("❚❚", fg="yellow")
                    label = "PAUSED"
                else:
                    led = click.style("●", fg="red", blink=True)
                    label = "REC"
                line = f"\r  {led} {label} {_format_seconds(recorder.elapsed_time)}"
                if options.is_loop:
                    line += f"  buffer {_format_seconds(recorder.buffer_duration)}"
                else:
                    line += f" / {_format_seconds(options.duration_seconds)}"
                click.echo(line + "   ", nl=False)
                done.wait(0.25)
            click.echo()
    finally:
        signal.signal(signal.SIGINT, original_int)
        if original_tstp is not None:
            signal.signal(signal.SIGTSTP, original_tstp)

    if "error" in outcome:
        raise click.ClickException(_describe_error(outcome["error"]))

    result = outcome["result"]
    path = library.save(result)
    click.echo(f"Recording saved: {path} ({result.duration:.0f}s, {result.size / 1_000_000:.1f} MB)")


@main.command(name="list")
@click.option("--limit", "-n", default=20, help="Number of entries to show.")
@click.option("--no-header", is_flag=True, help="Omit table header.")
def list_recordings(limit, no_header):
    """List saved recordings, newest first."""
    from screenrec.library import RecordingLibrary
    from screenrec.paths import get_recordings_dir, load_config

    _, data_dir, _ = load_config()
    library = RecordingLibrary(get_recordings_dir(data_dir))

    recordings = library.list_recordings(limit=limit)
    if not recordings:
        click.echo("No recordings found.")
        return

    if not no_header:
        click.echo(f"{'Duration':>9}  {'Mode':<6} {'Size':>9}  {'File'}")
        click.echo("-" * 72)

    for r in recordings:
        dur_str = _format_seconds(r.duration) if r.duration is not None else "---"
        size_str = f"{r.size / 1_000_000:.1f} MB"
        click.echo(f"{dur_str:>9}  {r.mode or '?':<6} {size_str:>9}  {r.video_path.name}")


@main.command()
def formats():
    """Show whether capture works here and which containers can be produced."""
    from screenrec.paths import load_config
    from screenrec.recorder.formats import candidate_mime_types

    cfg, _, _ = load_config()
    source = _create_source(cfg)

    if not source.is_supported():
        click.echo(f"Screen capture unavailable: '{cfg.capture.ffmpeg}' not found or platform unsupported.")
        return

    click.echo(f"Screen capture available via {cfg.capture.ffmpeg}.")
    click.echo(f"{'MIME type':<24} {'Supported'}")
    click.echo("-" * 36)
    for mime_type in candidate_mime_types("mp4"):
        supported = "yes" if source.is_type_supported(mime_type) else "no"
        click.echo(f"{mime_type:<24} {supported}")


@main.command()
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--list", "list_all", is_flag=True, help="Show all configuration values.")
def config(key, value, list_all):
    """View or set configuration."""
    from screenrec.paths import load_config

    cfg, _, config_path = load_config()

    if list_all or (key is None and value is None):
        for section_name, section_dict in cfg._to_dict().items():
            for k, v in section_dict.items():
                click.echo(f"{section_name}.{k} = {v!r}")
        return

    if value is None:
        try:
            click.echo(cfg.get(key))
        except KeyError as e:
            raise click.ClickException(str(e))
        return

    try:
        cfg.set(key, value)
    except (KeyError, ValueError) as e:
        raise click.ClickException(str(e))
    cfg.save(config_path)
    click.echo(f"Set {key} = {cfg.get(key)!r}")
