#!/usr/bin/env python3
"""
Adaptive Company Profile Scraper - banner, logo and profile metadata

Loads each company page in Playwright Chromium, runs the extraction cascade for the
banner and the logo, parses profile metadata from the rendered markup and writes one
JSON result per company plus a run summary. Learned patterns persist between runs.

    python -m src.scraper https://www.linkedin.com/company/acme/ --output-dir data/extractions
    python -m src.scraper --maintenance
"""

import argparse
import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List

from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from .engine import ExtractionEngine
from .extraction.page_surface import PlaywrightPageSurface
from .gcs_utils import download_file_from_gcs
from .models import utc_now
from .settings import DEFAULT_DATA_DIR, EngineSettings

logger = logging.getLogger(__name__)

SCRAPER_VERSION = "2.1-adaptive"
USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

NAVIGATION_TIMEOUT = 60000  # ms
NETWORK_IDLE_TIMEOUT = 20000  # ms


async def scrape_company(engine: ExtractionEngine, context: Any, url: str) -> Dict[str, Any]:
    """Open one company page and run the full extraction."""
    page = await context.new_page()
    surface = PlaywrightPageSurface(page)
    try:
        # Subscribe before navigation so the initial API traffic is observed
        banner_session = engine.new_session(url, surface)
        banner_session.attach()
        await page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT)
        try:
            await page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_TIMEOUT)
        except PlaywrightTimeout:
            logger.debug("  Network did not go idle, continuing")

        return await engine.extract_company(url, surface, banner_session=banner_session)
    finally:
        await page.close()


def write_result(output_dir: Path, result: Dict[str, Any]) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{result['company_id']}.json"
    path.write_text(json.dumps(result, indent=2), encoding="utf-8")
    return path


async def main_async(args) -> List[Dict[str, Any]]:
    settings = EngineSettings.from_env()
    if args.environment:
        settings.environment = args.environment
    if args.no_adaptive:
        settings.adaptive_mode = False

    engine = ExtractionEngine(settings)
    if args.seed_from_gcs and settings.gcs_bucket:
        seed = settings.pattern_db_path.parent / "seed_patterns.json"
        if download_file_from_gcs(settings.gcs_bucket, args.seed_from_gcs, seed):
            engine.store.import_patterns(seed)

    if args.maintenance:
        report = await engine.run_maintenance()
        await engine.shutdown()
        return [report]

    results: List[Dict[str, Any]] = []
    engine.start()
    try:
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=not args.headed)
            context = await browser.new_context(user_agent=USER_AGENT, viewport={"width": 1920, "height": 1080})
            if args.cookies_file:
                cookies = json.loads(Path(args.cookies_file).read_text(encoding="utf-8"))
                await context.add_cookies(cookies)

            for i, url in enumerate(args.urls, 1):
                logger.info(f"\n[{i}/{len(args.urls)}] {url}")
                try:
                    result = await scrape_company(engine, context, url)
                    path = write_result(args.output_dir, result)
                    results.append(result)
                    logger.info(f"✅ Done: banner={'yes' if result['metadata']['banner_url'] else 'no'} -> {path}")
                except Exception as e:
                    logger.error(f"❌ Error: {str(e)[:200]}")
                    results.append({"url": url, "status": "error", "error": str(e)[:200]})

            await context.close()
            await browser.close()
    finally:
        await engine.shutdown()
    return results


def main():
    """CLI entry"""
    parser = argparse.ArgumentParser(description="Adaptive company profile scraper (banner, logo, metadata)")
    parser.add_argument("urls", nargs="*", help="Company page URLs")
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_DATA_DIR / "extractions")
    parser.add_argument("--environment", choices=["production", "development"], help="Overrides EXTRACTION_ENV")
    parser.add_argument("--no-adaptive", action="store_true", help="Use only the static extraction vocabulary")
    parser.add_argument("--cookies-file", type=Path, help="JSON list of browser cookies for an authenticated session")
    parser.add_argument("--seed-from-gcs", help="Blob path of a pattern export to import before running")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--maintenance", action="store_true", help="Run one maintenance cycle and exit")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s | %(levelname)s | %(message)s')
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    if not args.urls and not args.maintenance:
        parser.error("at least one company URL is required unless --maintenance is given")

    start = time.time()
    results = asyncio.run(main_async(args))
    elapsed = time.time() - start

    if args.maintenance:
        logger.info(json.dumps(results[0], indent=2))
        return

    successful = [r for r in results if r.get("status") == "success"]
    logger.info("\n" + "=" * 80)
    logger.info("🎉 EXTRACTION COMPLETE")
    logger.info("=" * 80)
    logger.info(f"✅ Banners found: {len(successful)}/{len(results)}")
    logger.info(f"⏱️  Time: {elapsed:.1f}s")
    logger.info("=" * 80)

    summary = args.output_dir / "extraction_summary.json"
    summary.parent.mkdir(parents=True, exist_ok=True)
    summary.write_text(json.dumps({
        "date": utc_now().isoformat(),
        "version": SCRAPER_VERSION,
        "companies": len(results),
        "banners_found": len(successful),
        "results": results,
    }, indent=2), encoding="utf-8")
    logger.info(f"💾 Summary: {summary}\n")


if __name__ == "__main__":
    main()
