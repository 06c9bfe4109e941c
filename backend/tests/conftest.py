"""
Pytest fixtures and test infrastructure for the catalog scrape core.
"""
import pytest
import os
import sys
from datetime import datetime, timedelta

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

SITE_ROOT = 'https://books.example.com/en-gb'


@pytest.fixture
def sqlite_conn():
    """In-memory SQLite database with the real catalog schema."""
    from catalog.database import init_sqlite_database
    conn = init_sqlite_database(':memory:')
    yield conn
    conn.close()


@pytest.fixture
def postgres_conn():
    """Test PostgreSQL connection (requires TEST_DATABASE_URL env var)."""
    url = os.environ.get('TEST_DATABASE_URL')
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")
    from catalog.database import init_postgres_database
    conn = init_postgres_database(url)
    yield conn
    conn.rollback()  # Don't persist test data
    conn.close()


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeSession:
    """Session driver serving canned HTML per URL."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.errors = {}
        self.calls = []
        self.closed = False

    def fetch(self, url, handler, timeouts, wait_until='domcontentloaded'):
        self.calls.append((url, timeouts, wait_until))
        if url in self.errors:
            raise self.errors[url]
        if url not in self.pages:
            from catalog.errors import ScrapeError
            raise ScrapeError(f"HTTP 404 for {url}", url=url)
        return handler(self.pages[url], url)

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    """Frozen clock at 2024-06-01 12:00."""
    return FakeClock(datetime(2024, 6, 1, 12, 0, 0))


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def scrape_config():
    """Config pointing at a fake site, quiet output."""
    from catalog.config import ScrapeConfig
    return ScrapeConfig(base_url='https://books.example.com', verbose=False)


@pytest.fixture
def orchestrator(sqlite_conn, scrape_config, fake_session, clock):
    from catalog.orchestrator import ScrapeOrchestrator
    return ScrapeOrchestrator(sqlite_conn, scrape_config, session=fake_session, clock=clock)


# =============================================================================
# Page fixtures
# =============================================================================

@pytest.fixture
def navigation_html():
    return '''
    <html><body>
      <header>
        <nav>
          <a href="/en-gb/collections/books">Books</a>
          <a href="/en-gb/collections/music-movies">Music &amp; Movies</a>
          <a href="/en-gb/collections/books">Books again</a>
          <a href="#main">Skip to content</a>
          <a href="javascript:void(0)">Menu</a>
          <a href="/en-gb/pages/about"></a>
        </nav>
      </header>
    </body></html>
    '''


@pytest.fixture
def categories_html():
    return '''
    <html><body>
      <div class="mega-menu">
        <ul>
          <li>
            <a href="/en-gb/collections/fiction-books">Fiction (1,204)</a>
            <ul>
              <li><a href="/en-gb/collections/crime-thrillers">Crime &amp; Thrillers</a></li>
              <li><a href="/en-gb/collections/fantasy-books"><span class="title">Fantasy</span> <span class="count">88</span></a></li>
            </ul>
          </li>
          <li><a href="/en-gb/collections/non-fiction-books" title="Non-Fiction"><img src="/img/nf.jpg"></a></li>
        </ul>
      </div>
      <div class="category-card">
        <img src="https://cdn.example.com/kids.jpg">
        <a href="/en-gb/collections/childrens-books">Children's Books</a>
      </div>
      <a href="/en-gb/collections/fiction-books?sort=price">Fiction sorted by price</a>
      <a class="category-link" href="/en-gb/pages/about">About us</a>
      <a href="/en-gb/collections/x">X</a>
    </body></html>
    '''


@pytest.fixture
def product_list_html():
    return '''
    <html><body>
      <ol class="ais-InfiniteHits-list">
        <li class="ais-InfiniteHits-item">
          <a class="product-card truncate-title" href="/en-gb/products/the-hobbit-9780261102217">The Hobbit</a>
          <p class="author truncate-author">J.R.R. Tolkien</p>
          <div class="price">£4.99</div>
          <div class="was-price">£8.99</div>
          <span class="condition">Very Good</span>
          <span class="format">Paperback</span>
          <img src="/images/hobbit.jpg">
        </li>
        <li class="ais-InfiniteHits-item">
          <a class="product-card" href="https://books.example.com/en-gb/products/dune-9780340960196?variant=2">Dune</a>
          <span class="author">Frank Herbert</span>
          <div class="price">Now £1,299.50</div>
          <span class="sold-out">Sold out</span>
        </li>
        <li class="ais-InfiniteHits-item">
          <a class="product-card" href="/en-gb/collections/sale">Sale</a>
        </li>
        <li class="ais-InfiniteHits-item">
          <a class="product-card" href="/en-gb/products/untitled"></a>
        </li>
      </ol>
    </body></html>
    '''


@pytest.fixture
def product_detail_html():
    return '''
    <html><body>
      <div class="product-description"><p>A hobbit goes on an adventure.</p></div>
      <div class="product-rating">4.6 out of 5</div>
      <span class="review-count">(2 reviews)</span>
      <table class="specifications">
        <tr><th>Publisher</th><td>HarperCollins</td></tr>
        <tr><th>ISBN 10</th><td>0261102214</td></tr>
        <tr><th>ISBN 13</th><td>9780261102217</td></tr>
        <tr><th>Number of Pages</th><td>320 pages</td></tr>
        <tr><th>Language</th><td>English</td></tr>
        <tr><th>Dimensions</th><td>17.8 x 11.1 cm</td></tr>
        <tr><th>Weight</th><td>240g</td></tr>
        <tr><th>Publication Date</th><td>21/09/1995</td></tr>
        <tr><td>Binding</td><td>Paperback</td></tr>
      </table>
      <div class="reviews">
        <div class="review">
          <span class="author">Sam</span>
          <span class="rating">5</span>
          <h4 class="review-title">Classic</h4>
          <p class="review-text">Loved it.</p>
          <span class="date">01/05/2023</span>
          <span class="verified">Verified purchase</span>
        </div>
        <div class="review"><span class="rating">4 stars</span></div>
        <div class="review"><span class="author">Nobody</span></div>
        <div class="review"><span class="rating">9</span><p class="text">Odd score</p></div>
      </div>
      <div class="related-products">
        <a href="/en-gb/products/the-silmarillion-111">The Silmarillion</a>
        <a href="/en-gb/products/the-silmarillion-111">The Silmarillion</a>
      </div>
      <div class="recommended-products">
        <a href="/en-gb/products/lotr-222">The Lord of the Rings</a>
      </div>
    </body></html>
    '''
