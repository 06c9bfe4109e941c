"""
Extraction strategies for catalog pages.

Pure functions: raw HTML in, candidate records out. Every extraction walks
an ordered list of selector strategies (selector + mapper). The first
strategy that yields at least one accepted record wins; categories are the
exception and merge all strategies, deduplicating by URL and slug.

Records missing a title or a resolvable URL are dropped silently.
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence
from urllib.parse import urljoin, urlparse

import pandas as pd
from bs4 import BeautifulSoup, Tag

from .models import (
    ProductRef,
    ScrapedCategory,
    ScrapedNavigation,
    ScrapedProduct,
    ScrapedProductDetail,
    ScrapedReview,
    ScrapeTargetType,
)


# =============================================================================
# Limits and patterns
# =============================================================================

MAX_NAVIGATION_ITEMS = 10
MAX_CATEGORIES = 20
MAX_PRODUCTS = 30

PRICE_PATTERN = re.compile(r'[\d.,]+')
NUMBER_PATTERN = re.compile(r'[\d.]+')
INTEGER_PATTERN = re.compile(r'\d+')
PRODUCT_ID_PATTERN = re.compile(r'/products?/([^/?#]+)')
COLLECTION_SLUG_PATTERN = re.compile(r'/collections/([^/?#]+)')
TRAILING_COUNT_PATTERN = re.compile(r'\s*\((\d[\d,]*)\)\s*$')

DEFAULT_CURRENCY = "GBP"


@dataclass(frozen=True)
class SelectorStrategy:
    """One way of finding records: a CSS selector plus an element mapper."""
    selector: str
    mapper: Callable[[Tag, str], Optional[object]]


# =============================================================================
# Text helpers
# =============================================================================

def slugify(text: str) -> str:
    """Lowercase, drop punctuation, hyphenate whitespace.

    Examples:
        "Fiction & Literature" -> "fiction-literature"
        "  Sci_Fi -- Fantasy " -> "sci-fi-fantasy"
    """
    if not text:
        return ''
    slug = text.lower().strip()
    slug = re.sub(r'[^\w\s-]', '', slug)
    slug = re.sub(r'[\s_-]+', '-', slug)
    return slug.strip('-')


def parse_price(text: Optional[str]) -> Optional[float]:
    """Parse the first run of digits/dots/commas as a float.

    Examples:
        "£4.99" -> 4.99
        "Now £1,299.00" -> 1299.0
        "Free" -> None
    """
    if not text:
        return None
    match = PRICE_PATTERN.search(text)
    if not match:
        return None
    try:
        return float(match.group(0).replace(',', ''))
    except ValueError:
        return None


def parse_number(text: Optional[str]) -> Optional[float]:
    """First run of digits and dots as a float ("4.5 out of 5" -> 4.5)."""
    if not text:
        return None
    match = NUMBER_PATTERN.search(text)
    if not match:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        return None


def parse_int(text: Optional[str]) -> Optional[int]:
    """First run of digits as an int ("(12 reviews)" -> 12)."""
    if not text:
        return None
    match = INTEGER_PATTERN.search(text.replace(',', ''))
    return int(match.group(0)) if match else None


def parse_date(text: Optional[str]):
    """Lenient date parsing; day-first as used on UK pages. None if unparseable."""
    if not text:
        return None
    parsed = pd.to_datetime(text, errors='coerce', dayfirst=True)
    if pd.isna(parsed):
        return None
    return parsed.date()


def extract_source_id(url: str) -> str:
    """Catalog id from a product URL, falling back to a slug of the URL path.

    Examples:
        ".../en-gb/products/harry-potter-9780747532699" -> "harry-potter-9780747532699"
        ".../en-gb/books/item?id=5" -> "en-gb-books-item"
    """
    match = PRODUCT_ID_PATTERN.search(url)
    if match:
        return match.group(1)
    path = urlparse(url).path or url
    return slugify(path.replace('/', ' ')) or slugify(url)


def resolve_url(href: Optional[str], page_url: str) -> Optional[str]:
    """Absolute http(s) URL for an href, or None if it cannot be followed."""
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(('javascript:', 'mailto:', 'tel:')):
        return None
    absolute = urljoin(page_url, href)
    if urlparse(absolute).scheme not in ('http', 'https'):
        return None
    return absolute


def _text(element: Optional[Tag]) -> Optional[str]:
    """Whitespace-normalised text content, None when empty."""
    if element is None:
        return None
    text = ' '.join(element.get_text(' ').split())
    return text or None


def _first(element: Tag, selectors: Iterable[str]) -> Optional[Tag]:
    """First element matched by the first selector that matches anything."""
    for selector in selectors:
        found = element.select_one(selector)
        if found is not None:
            return found
    return None


def _image_src(img: Optional[Tag], page_url: str) -> Optional[str]:
    if img is None:
        return None
    return resolve_url(img.get('src') or img.get('data-src'), page_url)


def _is_complete(title: Optional[str], url: Optional[str]) -> bool:
    return bool(title) and bool(url)


# =============================================================================
# Strategy runners
# =============================================================================

def first_match(soup: BeautifulSoup, strategies: Sequence[SelectorStrategy],
                page_url: str, key: Optional[Callable] = None,
                limit: Optional[int] = None) -> List:
    """Run strategies in order; return the output of the first one with results.

    Within a strategy, a record whose key was already seen is dropped.
    """
    for strategy in strategies:
        items = []
        seen = set()
        for element in soup.select(strategy.selector):
            record = strategy.mapper(element, page_url)
            if record is None:
                continue
            if key is not None:
                record_key = key(record)
                if record_key in seen:
                    continue
                seen.add(record_key)
            items.append(record)
        if items:
            return items[:limit] if limit is not None else items
    return []


def union_match(soup: BeautifulSoup, strategies: Sequence[SelectorStrategy],
                page_url: str, keys: Sequence[Callable],
                limit: Optional[int] = None) -> List:
    """Run every strategy, keeping the first record seen for each key."""
    items = []
    seen = [set() for _ in keys]
    for strategy in strategies:
        for element in soup.select(strategy.selector):
            record = strategy.mapper(element, page_url)
            if record is None:
                continue
            record_keys = [key(record) for key in keys]
            if any(k in seen_keys for k, seen_keys in zip(record_keys, seen)):
                continue
            for k, seen_keys in zip(record_keys, seen):
                seen_keys.add(k)
            items.append(record)
    return items[:limit] if limit is not None else items


# =============================================================================
# Navigation
# =============================================================================

def _map_nav_link(link: Tag, page_url: str) -> Optional[ScrapedNavigation]:
    title = _text(link)
    url = resolve_url(link.get('href'), page_url)
    if not _is_complete(title, url) or '#' in url:
        return None
    slug = slugify(title) or extract_source_id(url)
    return ScrapedNavigation(title=title, slug=slug, url=url)


NAVIGATION_STRATEGIES = [
    SelectorStrategy(selector, _map_nav_link)
    for selector in (
        'nav a',
        '.main-nav a',
        '.navigation a',
        'header nav a',
        '[data-testid="nav-link"]',
        '.menu a',
    )
]


def extract_navigation(html: str, page_url: str,
                       limit: int = MAX_NAVIGATION_ITEMS) -> List[ScrapedNavigation]:
    """Menu headings in first-seen order, order field = position."""
    soup = BeautifulSoup(html, 'html.parser')
    items = first_match(soup, NAVIGATION_STRATEGIES, page_url,
                        key=lambda nav: nav.url, limit=limit)
    for index, item in enumerate(items):
        item.order = index
    return items


# =============================================================================
# Categories
# =============================================================================

def _collection_slug(url: str) -> Optional[str]:
    match = COLLECTION_SLUG_PATTERN.search(url)
    return match.group(1) if match else None


def _parent_collection_slug(link: Tag, page_url: str) -> Optional[str]:
    """Slug of the collection link owning the nested list this link sits in."""
    item = link.find_parent('li')
    if item is None:
        return None
    outer = item.find_parent('li')
    if outer is None:
        return None
    parent_link = outer.find('a', href=True)
    if parent_link is None or parent_link is link:
        return None
    parent_url = resolve_url(parent_link.get('href'), page_url)
    if not parent_url or '/collections/' not in parent_url:
        return None
    return _collection_slug(parent_url)


def _map_category_link(link: Tag, page_url: str) -> Optional[ScrapedCategory]:
    url = resolve_url(link.get('href'), page_url)
    if not url or '/collections/' not in url:
        return None

    title = (_text(link)
             or (link.get('title') or '').strip()
             or _text(link.select_one('.title, h2, h3, span')))
    if not title:
        return None

    count_text = _text(link.select_one('.count, .product-count'))
    product_count = parse_int(count_text)
    if count_text and title.endswith(count_text) and title != count_text:
        title = title[:-len(count_text)].strip()
    count_match = TRAILING_COUNT_PATTERN.search(title)
    if count_match:
        if product_count is None:
            product_count = parse_int(count_match.group(1))
        title = title[:count_match.start()].strip()

    if not (1 < len(title) < 100):
        return None

    img = link.select_one('img')
    if img is None and link.parent is not None:
        img = link.parent.select_one('img')

    slug = _collection_slug(url) or slugify(title)
    parent_slug = _parent_collection_slug(link, page_url)
    if parent_slug == slug:
        parent_slug = None

    return ScrapedCategory(
        title=title,
        slug=slug,
        url=url,
        image_url=_image_src(img, page_url),
        product_count=product_count,
        parent_slug=parent_slug,
    )


CATEGORY_STRATEGIES = [
    SelectorStrategy(selector, _map_category_link)
    for selector in (
        'a[href*="/collections/"]',
        '.collection-link',
        '.category-link',
        '.mega-menu a',
        '.nav-link[href*="/collections/"]',
        '.category-card a',
        '.collection-card a',
        '.sidebar a[href*="/collections/"]',
        '.filter-list a',
    )
]


def extract_categories(html: str, page_url: str,
                       limit: int = MAX_CATEGORIES) -> List[ScrapedCategory]:
    """Collection links, deduplicated by URL and by slug."""
    soup = BeautifulSoup(html, 'html.parser')
    items = union_match(soup, CATEGORY_STRATEGIES, page_url,
                        keys=(lambda c: c.url, lambda c: c.slug), limit=limit)
    for index, item in enumerate(items):
        item.order = index
    return items


# =============================================================================
# Product listings
# =============================================================================

OUT_OF_STOCK_SELECTORS = ('.sold-out', '.out-of-stock', '[data-availability="out-of-stock"]')


def _build_product(title: Optional[str], url: Optional[str], card: Tag,
                   page_url: str, author_selectors: Sequence[str]) -> Optional[ScrapedProduct]:
    if not _is_complete(title, url) or '/products/' not in url:
        return None

    in_stock = _first(card, OUT_OF_STOCK_SELECTORS) is None

    return ScrapedProduct(
        source_id=extract_source_id(url),
        title=title,
        source_url=url,
        author=_text(_first(card, author_selectors)),
        price=parse_price(_text(card.select_one('.price'))),
        original_price=parse_price(_text(card.select_one('.was-price, .original-price'))),
        currency=DEFAULT_CURRENCY,
        image_url=_image_src(card.select_one('img'), page_url),
        condition=_text(card.select_one('.condition')),
        format=_text(card.select_one('.format')),
        in_stock=in_stock,
    )


def _map_search_hit(container: Tag, page_url: str) -> Optional[ScrapedProduct]:
    """Instant-search result tile (li.ais-InfiniteHits-item)."""
    link = _first(container, ('a.product-card.truncate-title',
                              'a.product-card',
                              'a[href*="/products/"]'))
    if link is None:
        return None
    return _build_product(
        title=_text(link),
        url=resolve_url(link.get('href'), page_url),
        card=container,
        page_url=page_url,
        author_selectors=('p.author.truncate-author', '.author'),
    )


def _map_product_card(card: Tag, page_url: str) -> Optional[ScrapedProduct]:
    """Generic product tile markup."""
    if card.name == 'a':
        link = card
    else:
        link = card.select_one('a[href*="/products/"]') or card.select_one('a')
    if link is None:
        return None
    title = _text(card.select_one('.product-card__title, h2, h3, .title')) or _text(link)
    return _build_product(
        title=title,
        url=resolve_url(link.get('href'), page_url),
        card=card,
        page_url=page_url,
        author_selectors=('.author', '.subtitle'),
    )


PRODUCT_STRATEGIES = [
    SelectorStrategy('li.ais-InfiniteHits-item', _map_search_hit),
    SelectorStrategy('.product-card', _map_product_card),
    SelectorStrategy('.product-tile', _map_product_card),
    SelectorStrategy('.grid-item.product', _map_product_card),
]


def extract_products(html: str, page_url: str,
                     limit: int = MAX_PRODUCTS) -> List[ScrapedProduct]:
    """Product summaries from a collection page."""
    soup = BeautifulSoup(html, 'html.parser')
    return first_match(soup, PRODUCT_STRATEGIES, page_url,
                       key=lambda product: product.source_url,
                       limit=min(limit, MAX_PRODUCTS))


# =============================================================================
# Product detail
# =============================================================================

DESCRIPTION_SELECTORS = ('.description', '.product-description', '[data-testid="description"]')
SPECS_TABLE_SELECTORS = ('.specifications', '.product-specs', 'table')
RATING_SELECTORS = ('.rating', '.product-rating', '[data-testid="rating"]')
REVIEW_COUNT_SELECTORS = ('.review-count', '.reviews-count')
REVIEW_SELECTOR = '.review, .product-review, [data-testid="review"]'
RELATED_SELECTOR = '.related-products a, .you-may-like a, [data-testid="related-product"]'
RECOMMENDED_SELECTOR = '.recommended-products a, [data-testid="recommended-product"]'

# Specifications table key (lowercased) -> detail field. Every matching rule applies.
SPEC_FIELD_RULES = [
    (lambda key: 'publisher' in key, 'publisher'),
    (lambda key: 'isbn' in key and '13' not in key, 'isbn'),
    (lambda key: 'isbn' in key and '13' in key, 'isbn13'),
    (lambda key: 'pages' in key, 'pages'),
    (lambda key: 'language' in key, 'language'),
    (lambda key: 'dimension' in key, 'dimensions'),
    (lambda key: 'weight' in key, 'weight'),
    (lambda key: 'publication' in key or 'date' in key, 'publication_date'),
]


def _outside_reviews(element: Tag) -> bool:
    return element.find_parent(class_=['review', 'product-review']) is None


def _page_level(soup: BeautifulSoup, selectors: Sequence[str]) -> Optional[Tag]:
    """First match not nested inside an individual review."""
    for selector in selectors:
        for element in soup.select(selector):
            if _outside_reviews(element):
                return element
    return None


def _parse_specs(soup: BeautifulSoup, detail: ScrapedProductDetail) -> None:
    table = _first(soup, SPECS_TABLE_SELECTORS)
    if table is None:
        return
    for row in table.select('tr'):
        key_cell = row.select_one('th') or row.select_one('td')
        cells = row.select('td')
        value_cell = cells[-1] if cells else None
        if key_cell is None or value_cell is None or key_cell is value_cell:
            continue
        key, value = _text(key_cell), _text(value_cell)
        if not key or not value:
            continue
        detail.specs[key] = value

        key_lower = key.lower()
        for matches, field_name in SPEC_FIELD_RULES:
            if not matches(key_lower):
                continue
            if field_name == 'pages':
                detail.pages = parse_int(value)
            elif field_name == 'publication_date':
                detail.publication_date = parse_date(value)
            else:
                setattr(detail, field_name, value)


def _parse_review(element: Tag) -> Optional[ScrapedReview]:
    rating = parse_number(_text(element.select_one('.rating, .stars')))
    if rating is not None:
        rating = int(rating)
        if not 1 <= rating <= 5:
            rating = None
    text = _text(element.select_one('.text, .review-text, .content'))
    if not text and rating is None:
        return None
    return ScrapedReview(
        author=_text(element.select_one('.author, .reviewer-name')),
        rating=rating,
        title=_text(element.select_one('.title, .review-title')),
        text=text,
        review_date=parse_date(_text(element.select_one('.date, .review-date'))),
        verified=element.select_one('.verified, .verified-purchase') is not None,
    )


def _product_refs(soup: BeautifulSoup, selector: str, page_url: str) -> List[ProductRef]:
    refs = []
    seen = set()
    for link in soup.select(selector):
        title = _text(link)
        url = resolve_url(link.get('href'), page_url)
        if not _is_complete(title, url) or url in seen:
            continue
        seen.add(url)
        refs.append(ProductRef(source_id=extract_source_id(url), title=title, url=url))
    return refs


def extract_product_detail(html: str, page_url: str) -> ScrapedProductDetail:
    """Everything the product page says beyond the listing tile."""
    soup = BeautifulSoup(html, 'html.parser')
    detail = ScrapedProductDetail()

    detail.description = _text(_first(soup, DESCRIPTION_SELECTORS))
    _parse_specs(soup, detail)
    detail.ratings_avg = parse_number(_text(_page_level(soup, RATING_SELECTORS)))
    detail.reviews_count = parse_int(_text(_first(soup, REVIEW_COUNT_SELECTORS)))

    for element in soup.select(REVIEW_SELECTOR):
        review = _parse_review(element)
        if review is not None:
            detail.reviews.append(review)

    detail.related_products = _product_refs(soup, RELATED_SELECTOR, page_url)
    detail.recommended_products = _product_refs(soup, RECOMMENDED_SELECTOR, page_url)
    return detail


# =============================================================================
# Dispatch
# =============================================================================

EXTRACTORS = {
    ScrapeTargetType.NAVIGATION: extract_navigation,
    ScrapeTargetType.CATEGORY: extract_categories,
    ScrapeTargetType.PRODUCT_LIST: extract_products,
}


def extract(kind: ScrapeTargetType, html: str, page_url: str) -> List:
    """Candidate records of the given kind found in html (possibly empty)."""
    if kind == ScrapeTargetType.PRODUCT_DETAIL:
        return [extract_product_detail(html, page_url)]
    return EXTRACTORS[kind](html, page_url)
