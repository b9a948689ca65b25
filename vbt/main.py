import typer
import yaml
from pathlib import Path
from typing import Optional
from pydantic import ValidationError

from vbt.config.loader import load_config
from vbt.infrastructure.logging import setup_logging
from vbt.infrastructure.event_bus import EventBus
from vbt.infrastructure.file_scanner import FileScanner
from vbt.infrastructure.ffprobe import FFprobeAdapter
from vbt.infrastructure.ffmpeg import FFmpegAdapter
from vbt.infrastructure.housekeeping import HousekeepingService
from vbt.infrastructure.publisher import build_publisher
from vbt.pipeline.orchestrator import Orchestrator
from vbt.ui.console import ConsoleReporter

app = typer.Typer(help="VBT (Video Batch Transcoder) - WebM/MP4 batch conversion with previews and publishing")

@app.command()
def convert(
    base_path: Optional[Path] = typer.Argument(
        None,
        help="Directory to convert (optional if general.base_path is set in config)"
    ),
    config_path: Path = typer.Option(Path("conf/vbt.yaml"), "--config", "-c", help="Path to YAML config"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-j", min=1, help="Override number of files processed in parallel"),
    output_path: Optional[Path] = typer.Option(None, "--output", "-o", help="Override output root"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Convert every media file under BASE_PATH to WebM/MP4, build previews and publish them."""
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValidationError, yaml.YAMLError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    # Apply CLI overrides
    if base_path is not None: config.general.base_path = base_path
    if concurrency: config.general.concurrency = concurrency
    if output_path is not None:
        if config.publish.mirror_root == config.general.output_path:
            config.publish.mirror_root = output_path
        config.general.output_path = output_path
    if log_path is not None: config.general.log_path = str(log_path)
    if debug: config.general.debug = True

    try:
        output_dir = Path(config.general.output_path)
        log_path_value = Path(config.general.log_path) if config.general.log_path else None
        logger = setup_logging(output_dir, debug=config.general.debug, log_path=log_path_value)
        logger.info(f"VBT started: base_path={config.general.base_path}, output={output_dir}")
        logger.info(
            f"Config: concurrency={config.general.concurrency}, encode={config.stages.encode}, "
            f"webm={config.stages.webm}, mp4={config.stages.mp4}, thumbnail={config.stages.thumbnail}, "
            f"s3_upload={config.publish.s3_upload}, fake_upload={config.publish.fake_upload}, "
            f"file_info={config.stages.file_info}, debug={config.general.debug}"
        )

        bus = EventBus()
        ConsoleReporter(bus, verbose=config.general.debug)

        exclude_dirs = [output_dir]
        if config.publish.mirror_root:
            exclude_dirs.append(Path(config.publish.mirror_root))
        scanner = FileScanner(extensions=config.general.extensions, exclude_dirs=exclude_dirs)
        timeout = config.general.process_timeout
        ffprobe = FFprobeAdapter(ffprobe_bin=config.tools.ffprobe, timeout=timeout)
        ffmpeg = FFmpegAdapter(
            ffmpeg_bin=config.tools.ffmpeg,
            encoding=config.encoding,
            audio_codec=config.general.audio_codec,
            timeout=timeout,
            debug=config.general.debug,
        )
        publisher = build_publisher(config.publish, event_bus=bus)

        orchestrator = Orchestrator(
            config=config,
            event_bus=bus,
            file_scanner=scanner,
            ffprobe_adapter=ffprobe,
            ffmpeg_adapter=ffmpeg,
            publisher=publisher,
            housekeeping=HousekeepingService(),
        )
        orchestrator.run(config.general.base_path)

    except KeyboardInterrupt:
        typer.secho("\nConversion stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except Exception as e:
        with open("error.log", "a") as f:
            import traceback
            traceback.print_exc(file=f)
        typer.secho(f"ERROR: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=getattr(e, "errno", None) or 1)

    typer.echo("Done.")

if __name__ == "__main__":
    app()
