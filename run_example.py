import logging
import multiprocessing
import time
from pathlib import Path
from ksrepo import KsRepoPipeline


def run_pipeline():
    # Debug messages go to the log file only, so the progress bar stays readable
    log_dir = Path("results/logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / f"pipeline_{time.strftime('%Y%m%d-%H%M%S')}.log")
    file_handler.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove any existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    config_path = Path("example/config.toml").absolute()
    if not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        pipeline = KsRepoPipeline(str(config_path))
        results = pipeline.run()
        print(results.head(10))
    except Exception:
        logging.exception("Error running the pipeline")
        raise


if __name__ == "__main__":
    # This is required on macOS for multiprocessing to work properly
    multiprocessing.freeze_support()
    run_pipeline()
