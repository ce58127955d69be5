"""
Site crawler — requests + BeautifulSoup.

crawl_site(domain) tries the sitemap first, falls back to link discovery from
the homepage, and extracts title / meta description / headings / body text /
JSON-LD schema data from up to CRAWL_MAX_PAGES pages.
combine_crawled_content(result) flattens it into one text block for analysis.

A page that fails to fetch is skipped; crawl_site never raises for network errors.
"""
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from app.config import CRAWL_MAX_PAGES, CRAWL_TIMEOUT_SECONDS

logger = logging.getLogger('services.crawler')

USER_AGENT = 'employer-brand-crawler/1.0'
SITEMAP_URL_LIMIT = 20
CHILD_SITEMAP_LIMIT = 5
MAX_HEADINGS = 20
MAX_BODY_CHARS = 5000
COMBINED_PAGE_CHARS = 1500

_RESOURCE_EXT = re.compile(r'\.(jpg|jpeg|png|gif|pdf|css|js|ico|svg|woff|woff2|ttf|xml)$')
_SKIP_PREFIXES = ('/api/', '/admin/', '/_')


@dataclass
class CrawledPage:
    url: str
    path: str
    title: str = ''
    description: str = ''
    h1: str = ''
    headings: List[str] = field(default_factory=list)
    body_text: str = ''
    word_count: int = 0
    schema_data: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class CrawlResult:
    domain: str
    pages: List[CrawledPage] = field(default_factory=list)
    has_sitemap: bool = False
    has_robots_txt: bool = False
    schema_types: List[str] = field(default_factory=list)
    extracted_locations: List[str] = field(default_factory=list)
    extracted_services: List[str] = field(default_factory=list)
    extracted_products: List[str] = field(default_factory=list)

    @property
    def total_pages(self):
        return len(self.pages)


def _get(url, timeout=CRAWL_TIMEOUT_SECONDS) -> Optional[requests.Response]:
    try:
        resp = requests.get(url, headers={'User-Agent': USER_AGENT}, timeout=timeout, allow_redirects=True)
        if resp.status_code >= 400:
            logger.debug("GET %s → HTTP %d", url, resp.status_code)
            return None
        return resp
    except requests.RequestException as e:
        logger.debug("GET %s failed: %s", url, e)
        return None


# ── Sitemap + robots ─────────────────────────────────────────────────────────

def _sitemap_locs(xml_text):
    return [loc.strip() for loc in re.findall(r'<loc>\s*([^<]+?)\s*</loc>', xml_text or '', flags=re.I)]


def _sitemap_priority(url):
    for rank, marker in enumerate(('page-sitemap', 'post-sitemap', 'product-sitemap', 'service-sitemap')):
        if marker in url:
            return rank
    return 10


def fetch_sitemap(domain):
    """Return (page_urls, found). Follows one level of sitemap index."""
    candidates = [
        f'https://{domain}/sitemap.xml',
        f'https://{domain}/sitemap_index.xml',
        f'https://www.{domain}/sitemap.xml',
    ]
    for url in candidates:
        resp = _get(url, timeout=10)
        if resp is None:
            continue
        locs = _sitemap_locs(resp.text)
        if not locs:
            continue

        children = [u for u in locs if u.endswith('.xml') or 'sitemap' in u]
        pages = [u for u in locs if u not in children]

        if len(children) > len(pages):
            for child in sorted(children, key=_sitemap_priority)[:CHILD_SITEMAP_LIMIT]:
                child_resp = _get(child, timeout=10)
                if child_resp is not None:
                    pages.extend(u for u in _sitemap_locs(child_resp.text) if not u.endswith('.xml'))
                if len(pages) >= SITEMAP_URL_LIMIT:
                    break

        pages = [u for u in pages if not _RESOURCE_EXT.search(urlparse(u).path.lower())]
        if pages:
            return pages[:SITEMAP_URL_LIMIT], True
    return [], False


def has_robots_txt(domain):
    resp = _get(f'https://{domain}/robots.txt', timeout=5)
    return resp is not None and 'text' in resp.headers.get('Content-Type', 'text')


# ── Link discovery ───────────────────────────────────────────────────────────

def _is_internal(host, domain):
    host = (host or '').lower()
    return host in (domain, f'www.{domain}')


def discover_pages(domain, max_pages=CRAWL_MAX_PAGES):
    """Breadth-first walk of internal links starting at the homepage."""
    to_visit = [f'https://{domain}', f'https://www.{domain}']
    discovered = []
    seen = set()

    while to_visit and len(discovered) < max_pages:
        url = to_visit.pop(0)
        clean = url.rstrip('/')
        if clean in seen:
            continue
        seen.add(clean)

        resp = _get(url)
        if resp is None:
            continue
        discovered.append(clean)

        soup = BeautifulSoup(resp.text, 'html.parser')
        for a in soup.find_all('a', href=True):
            href = a['href'].strip()
            if href.startswith(('#', 'javascript:', 'mailto:', 'tel:')):
                continue
            absolute = urlparse(urljoin(url, href))
            if not _is_internal(absolute.hostname, domain):
                continue
            path = absolute.path.lower()
            if _RESOURCE_EXT.search(path) or path.startswith(_SKIP_PREFIXES):
                continue
            candidate = f'{absolute.scheme}://{absolute.netloc}{absolute.path}'.rstrip('/')
            if candidate not in seen and candidate not in to_visit:
                to_visit.append(candidate)

        time.sleep(0.2)

    logger.info("Discovery complete for %s: %d pages", domain, len(discovered))
    return discovered


# ── Page extraction ──────────────────────────────────────────────────────────

def _schema_items(soup):
    for tag in soup.find_all('script', type='application/ld+json'):
        try:
            parsed = json.loads(tag.string or '')
        except (TypeError, ValueError):
            continue
        items = parsed if isinstance(parsed, list) else [parsed]
        for item in items:
            if not isinstance(item, dict):
                continue
            yield item
            for graph_item in item.get('@graph') or []:
                if isinstance(graph_item, dict):
                    yield graph_item


def _names(value):
    values = value if isinstance(value, list) else [value]
    out = []
    for v in values:
        if isinstance(v, dict):
            if v.get('name'):
                out.append(str(v['name']))
        elif v:
            out.append(str(v))
    return out


def parse_schema_item(item):
    """Reduce a schema.org JSON-LD object to the fields the analysis uses."""
    schema_type = item.get('@type') or ''
    if isinstance(schema_type, list):
        schema_type = schema_type[0] if schema_type else ''
    if not schema_type:
        return None

    schema = {'type': str(schema_type)}
    if item.get('name'):
        schema['name'] = str(item['name'])

    locations = []
    address = item.get('address')
    if isinstance(address, dict) and address.get('addressLocality'):
        loc = str(address['addressLocality'])
        if address.get('addressRegion'):
            loc += f", {address['addressRegion']}"
        if isinstance(address.get('addressCountry'), str):
            loc += f", {address['addressCountry']}"
        locations.append(loc)
    for key in ('areaServed', 'serviceArea'):
        if item.get(key):
            locations.extend(_names(item[key]))
    if locations:
        schema['locations'] = locations

    services = []
    catalog = item.get('hasOfferCatalog')
    if isinstance(catalog, dict):
        services.extend(_names(catalog.get('itemListElement') or []))
    if isinstance(item.get('makesOffer'), list):
        services.extend(_names(item['makesOffer']))
    if schema['type'] == 'Service' and schema.get('name'):
        services.append(schema['name'])
    if services:
        schema['services'] = services

    if schema['type'] == 'Product' and schema.get('name'):
        schema['products'] = [schema['name']]

    return schema


def extract_page_content(url) -> Optional[CrawledPage]:
    resp = _get(url)
    if resp is None or 'html' not in resp.headers.get('Content-Type', 'text/html'):
        return None

    soup = BeautifulSoup(resp.text, 'html.parser')
    schema_data = [s for s in (parse_schema_item(i) for i in _schema_items(soup)) if s]

    title = soup.title.get_text(strip=True) if soup.title else ''
    meta = soup.find('meta', attrs={'name': 'description'})
    description = (meta.get('content') or '').strip() if meta else ''
    h1_tag = soup.find('h1')
    h1 = h1_tag.get_text(strip=True) if h1_tag else ''
    headings = [h.get_text(strip=True) for h in soup.find_all(['h2', 'h3'])]
    headings = [h for h in headings if h][:MAX_HEADINGS]

    for tag in soup(['script', 'style', 'nav', 'footer', 'header', 'noscript']):
        tag.decompose()
    body_text = re.sub(r'\s+', ' ', soup.get_text(separator=' ', strip=True))

    return CrawledPage(
        url=url,
        path=urlparse(url).path or '/',
        title=title,
        description=description,
        h1=h1,
        headings=headings,
        body_text=body_text[:MAX_BODY_CHARS],
        word_count=len(body_text.split()),
        schema_data=schema_data,
    )


# ── Public API ───────────────────────────────────────────────────────────────

def _dedupe(values):
    return list(dict.fromkeys(v for v in values if v))


def crawl_site(domain) -> CrawlResult:
    """Crawl a domain. Returns a CrawlResult with zero pages if nothing loads."""
    started = time.time()
    domain = domain.lower().strip().removeprefix('https://').removeprefix('http://').removeprefix('www.').rstrip('/')

    urls, found = fetch_sitemap(domain)
    robots = has_robots_txt(domain)
    if not urls:
        logger.info("No sitemap URLs for %s, falling back to discovery", domain)
        urls = discover_pages(domain)
    if not urls:
        urls = [f'https://{domain}']

    result = CrawlResult(domain=domain, has_sitemap=found, has_robots_txt=robots)
    for url in urls[:CRAWL_MAX_PAGES]:
        page = extract_page_content(url)
        if page:
            result.pages.append(page)

    schemas = [s for p in result.pages for s in p.schema_data]
    result.schema_types = _dedupe(s['type'] for s in schemas)
    result.extracted_locations = _dedupe(loc for s in schemas for loc in s.get('locations', []))
    result.extracted_services = _dedupe(svc for s in schemas for svc in s.get('services', []))
    result.extracted_products = _dedupe(prod for s in schemas for prod in s.get('products', []))

    logger.info("Crawled %s: %d pages in %.1fs", domain, result.total_pages, time.time() - started)
    return result


def combine_crawled_content(result: CrawlResult) -> str:
    """Flatten a CrawlResult into the text block used by employer analysis."""
    lines = [
        f'Domain: {result.domain}',
        f'Pages crawled: {result.total_pages}',
        f"Has sitemap: {'Yes' if result.has_sitemap else 'No'}",
        f"Has robots.txt: {'Yes' if result.has_robots_txt else 'No'}",
    ]
    if result.extracted_locations:
        lines.append(f"\nLOCATIONS FROM SCHEMA MARKUP: {', '.join(result.extracted_locations)}")
    if result.extracted_services:
        lines.append(f"SERVICES FROM SCHEMA MARKUP: {', '.join(result.extracted_services)}")
    if result.extracted_products:
        lines.append(f"PRODUCTS FROM SCHEMA MARKUP: {', '.join(result.extracted_products)}")
    if result.schema_types:
        lines.append(f"SCHEMA TYPES FOUND: {', '.join(result.schema_types)}")
    lines.append('')

    for page in result.pages:
        lines.append(f'--- Page: {page.path} ---')
        if page.title:
            lines.append(f'Title: {page.title}')
        if page.description:
            lines.append(f'Description: {page.description}')
        if page.h1:
            lines.append(f'H1: {page.h1}')
        if page.headings:
            lines.append(f"Headings: {' | '.join(page.headings)}")
        lines.append(f'Content: {page.body_text[:COMBINED_PAGE_CHARS]}')
        lines.append('')

    return '\n'.join(lines)
