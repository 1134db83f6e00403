"""Manual scrape debugger for a single product page.

Fetches the page once and shows what every price selector matches, the
page title, and which strategy (if any) produced the price and name.

Usage:
    python scripts/debug_scrape.py https://www.amazon.com.br/dp/B0EXAMPLE
    python scripts/debug_scrape.py https://loja.example.com/produto/123 --json
"""

import argparse
import asyncio
import json
import os
import sys

# Add backend to path so we can import pricewatch modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from pricewatch.core.logging import configure_logging
from pricewatch.scrapers import Fetcher, PriceScraper


async def run_debug(url: str, as_json: bool = False) -> int:
    """Run debug_scrape and print the report.

    Returns:
        Process exit code (0 when a price was extracted)
    """
    async with Fetcher() as fetcher:
        scraper = PriceScraper(fetcher)
        support = scraper.is_supported_site(url)
        report = await scraper.debug_scrape(url)

    if as_json:
        print(json.dumps({"support": support.confidence, **report}, ensure_ascii=False, indent=2, default=str))
        return 0 if report.get("extracted", {}).get("success") else 1

    print(f"\n{'='*70}")
    print(f"  Debug scrape: {report['domain']}")
    print(f"{'='*70}")
    print(f"  🔗 URL: {url}")
    print(f"  🧭 Site support: {support.confidence}")

    if "error" in report:
        print(f"\n❌ Fetch failed: {report['error']}")
        print(f"   Duration: {report['duration_ms']}ms\n")
        return 1

    print(f"  📡 Status: {report['status']}")
    print(f"  📦 Content length: {report['content_length']:,} chars")
    print(f"  📰 Title: {report['title'][:80]}")
    print(f"{'='*70}\n")

    print("Price selectors:")
    for selector, match in report["selectors"].items():
        if not match["found"]:
            continue
        print(f"  ✅ {selector} ({match['found']} found)")
        for text in match["texts"]:
            print(f"      → {text[:70]!r}")

    missing = sum(1 for m in report["selectors"].values() if not m["found"])
    print(f"  ({missing} selectors matched nothing)\n")

    extracted = report["extracted"]
    print(f"{'='*70}")
    print(f"  Result")
    print(f"{'='*70}")
    if extracted["success"]:
        print(f"  💰 Price: {extracted['price']:.2f} (via {extracted['price_strategy']})")
    else:
        print("  ⚠️  No price extracted")
    if extracted["name"]:
        print(f"  🏷️  Name: {extracted['name']} (via {extracted['name_strategy']})")
    print(f"  ⏱️  Duration: {report['duration_ms']}ms")
    print(f"{'='*70}\n")

    return 0 if extracted["success"] else 1


def main():
    """Parse arguments and run the debug scrape."""
    parser = argparse.ArgumentParser(
        description="Show how the scraper sees a product page",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/debug_scrape.py https://www.mercadolivre.com.br/p/MLB123
  python scripts/debug_scrape.py https://www.amazon.com.br/dp/B0EXAMPLE --json
        """,
    )

    parser.add_argument("url", help="Product page URL")
    parser.add_argument("--json", action="store_true", help="Print the raw report as JSON")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")

    args = parser.parse_args()

    configure_logging(args.log_level)
    sys.exit(asyncio.run(run_debug(args.url, as_json=args.json)))


if __name__ == "__main__":
    main()
