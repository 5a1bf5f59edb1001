import sys

from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from namcs_chc.config import ANALYSIS_FILE, DATASET_VERSION, LOGS_DIR, SOURCE_FILES, SOURCE_URLS  # noqa: E402
from namcs_chc.utils.logging import runtime_metadata, write_json  # noqa: E402


def main() -> None:
    info = {
        **runtime_metadata(),
        "dataset_version": DATASET_VERSION,
        "source_urls": SOURCE_URLS,
        "raw_files_exist": {source: path.exists() for source, path in SOURCE_FILES.items()},
        "analysis_file_exists": ANALYSIS_FILE.exists(),
    }
    write_json(LOGS_DIR / "environment_check.json", info)
    print("Wrote outputs/logs/environment_check.json")


if __name__ == "__main__":
    main()
