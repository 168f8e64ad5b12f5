from __future__ import annotations

import argparse
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from core.charts import windowed_chart
from core.data import DATA_DIR, DOCS_DIR, PROJECT_DIR, SourceUnavailableError, read_quarter_data, resolve_excel_path
from core.preferences import MemoryStorage, PreferenceStore, load_published_defaults


logger = logging.getLogger(__name__)

PUBLISHED_DEFAULTS_NAME = "published-defaults.json"


def build_pages(
    excel_path: Optional[str] = None,
    docs_dir: Path = DOCS_DIR,
    published_defaults_src: Path = DATA_DIR / PUBLISHED_DEFAULTS_NAME,
) -> List[Path]:
    """Write the static site (data.json, index.html, published defaults) for hosting without a backend."""
    raw = (excel_path or os.environ.get("EXCEL_PATH") or "data/data.xlsx").strip()
    excel = resolve_excel_path(raw)
    if not excel.is_absolute():
        excel = PROJECT_DIR / excel
    if not excel.is_file():
        raise SourceUnavailableError(
            f"Excel not found: {excel}. Put your file at data/data.xlsx (recommended) or set EXCEL_PATH."
        )

    docs_dir.mkdir(parents=True, exist_ok=True)
    dataset = read_quarter_data(str(excel))
    written: List[Path] = []

    data_json = docs_dir / "data.json"
    data_json.write_text(dataset.to_json(indent=2), encoding="utf-8")
    written.append(data_json)

    # Published colors/order become everyone's first-load defaults.
    defaults_dst = docs_dir / PUBLISHED_DEFAULTS_NAME
    if published_defaults_src.is_file():
        shutil.copyfile(published_defaults_src, defaults_dst)
        written.append(defaults_dst)

    prefs = PreferenceStore(MemoryStorage(), load_published_defaults(published_defaults_src))
    categories = prefs.effective_order(dataset.categories)
    index_html = docs_dir / "index.html"
    windowed_chart(dataset, categories, prefs.color_function(categories)).save(str(index_html))
    written.append(index_html)

    no_jekyll = docs_dir / ".nojekyll"
    no_jekyll.write_text("", encoding="utf-8")
    written.append(no_jekyll)
    return written


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Build the static quarter chart site")
    p.add_argument("--excel", default=None, help="Workbook path (default: EXCEL_PATH or data/data.xlsx)")
    p.add_argument("--docs-dir", type=Path, default=DOCS_DIR, help="Output directory")
    args = p.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    try:
        written = build_pages(args.excel, docs_dir=args.docs_dir)
    except (SourceUnavailableError, ValueError) as exc:
        logger.error("%s", exc)
        return 1
    logger.info("Wrote static site:")
    for path in written:
        logger.info("- %s", path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
