# run_mangadex_sync.py
import argparse
import asyncio
import json
import logging
import sys
import time
import traceback

from dotenv import load_dotenv

load_dotenv()

import config
from crawlers.base_crawler import open_http_session
from crawlers.mangadex_chapter_crawler import MangaDexChapterCrawler
from crawlers.mangadex_title_crawler import MangaDexTitleCrawler
from database import create_standalone_connection, get_cursor

LOGGER = logging.getLogger('run_mangadex_sync')

FEEDS = {
    MangaDexTitleCrawler.feed_name: MangaDexTitleCrawler,
    MangaDexChapterCrawler.feed_name: MangaDexChapterCrawler,
}


def build_parser():
    parser = argparse.ArgumentParser(description='Run one MangaDex catalog sync invocation.')
    parser.add_argument('--feed', choices=sorted(FEEDS), required=True)
    parser.add_argument('--state-id', default=None, help='crawl state row (defaults to the feed default)')
    parser.add_argument('--max-pages', type=int, default=config.SYNC_MAX_PAGES_DEFAULT)
    parser.add_argument('--hard-cap', type=int, default=config.SYNC_HARD_CAP_DEFAULT)
    parser.add_argument('--force', action='store_true', help='ignore the cursor stop condition')
    parser.add_argument('--log-level', default='INFO')
    return parser


async def run_feed(crawler_cls, conn, args):
    async with open_http_session() as session:
        crawler = crawler_cls.from_session(conn, session)
        return await crawler.run_invocation(
            args.state_id,
            max_pages=max(1, min(args.max_pages, config.SYNC_MAX_PAGES_LIMIT)),
            hard_cap=max(1, min(args.hard_cap, config.SYNC_HARD_CAP_LIMIT)),
            force=args.force,
        )


def save_run_report(feed_name, report):
    report_conn = None
    try:
        report_conn = create_standalone_connection()
        report_cursor = get_cursor(report_conn)
        report_cursor.execute(
            """
            INSERT INTO sync_run_reports (feed_name, status, report_data)
            VALUES (%s, %s, %s)
            """,
            (feed_name, report['status'], json.dumps(report, default=str)),
        )
        report_conn.commit()
        report_cursor.close()
    except Exception:
        LOGGER.exception("Failed to save sync run report for %s", feed_name)
    finally:
        if report_conn:
            report_conn.close()


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s - %(message)s',
    )

    crawler_cls = FEEDS[args.feed]
    report = {'status': 'success', 'feed': args.feed}
    start_time = time.time()
    conn = None
    try:
        conn = create_standalone_connection()
        payload = asyncio.run(run_feed(crawler_cls, conn, args))
        report['result'] = payload
        print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))
    except Exception as e:
        LOGGER.exception("MangaDex %s sync failed", args.feed)
        report['status'] = 'failure'
        report['error_code'] = getattr(e, 'code', type(e).__name__)
        report['error_message'] = traceback.format_exc()
    finally:
        if conn:
            conn.close()

    report['duration'] = time.time() - start_time
    save_run_report(args.feed, report)
    return 0 if report['status'] == 'success' else 1


if __name__ == '__main__':
    sys.exit(main())
