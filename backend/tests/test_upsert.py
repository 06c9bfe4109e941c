"""
Tests for the upsert reconciler.
Natural-key matching, partial updates, detail replacement and review replacement.
"""
import pytest
from datetime import date, datetime


def count_rows(conn, table, where='', params=()):
    cursor = conn.cursor()
    cursor.execute(f'SELECT COUNT(*) FROM {table} {where}', params)
    return cursor.fetchone()[0]


@pytest.fixture
def reconciler(sqlite_conn, clock):
    from catalog.reconciler import Reconciler
    return Reconciler(sqlite_conn, clock)


def make_product(source_id='the-hobbit', **overrides):
    from catalog.models import ScrapedProduct
    fields = dict(
        source_id=source_id,
        title='The Hobbit',
        source_url=f'https://books.example.com/en-gb/products/{source_id}',
        author='J.R.R. Tolkien',
        price=4.99,
    )
    fields.update(overrides)
    return ScrapedProduct(**fields)


class TestUpsertCategory:
    """Test category upsert by slug."""

    def test_create_then_update_same_slug(self, reconciler, sqlite_conn, clock):
        """Second upsert of 'fiction' updates the title and timestamp of the same row."""
        from catalog.models import ScrapedCategory

        first = reconciler.upsert_category(ScrapedCategory(
            title='Fiction', slug='fiction', url='https://books.example.com/collections/fiction'))
        assert first.is_new is True
        assert first.entity.last_scraped_at == clock.now
        created_at = clock.now

        clock.advance(minutes=5)
        second = reconciler.upsert_category(ScrapedCategory(
            title='Fiction & Literature', slug='fiction',
            url='https://books.example.com/collections/fiction'))

        assert second.is_new is False
        assert second.entity.id == first.entity.id
        assert second.changed_fields == {'title': ('Fiction', 'Fiction & Literature')}

        stored = reconciler.categories.find_by_slug('fiction')
        assert stored.title == 'Fiction & Literature'
        assert stored.last_scraped_at > created_at
        assert count_rows(sqlite_conn, 'categories', 'WHERE slug = ?', ('fiction',)) == 1

    def test_absent_fields_left_untouched(self, reconciler):
        """A candidate without an image or count does not erase stored ones."""
        from catalog.models import ScrapedCategory

        reconciler.upsert_category(ScrapedCategory(
            title='Fiction', slug='fiction', url='https://x/collections/fiction',
            image_url='https://x/fiction.jpg', product_count=120))
        reconciler.upsert_category(ScrapedCategory(
            title='Fiction', slug='fiction', url='https://x/collections/fiction'))

        stored = reconciler.categories.find_by_slug('fiction')
        assert stored.image_url == 'https://x/fiction.jpg'
        assert stored.product_count == 120

    def test_parent_link_and_children_query(self, reconciler):
        """Children carry the parent id resolved by the caller."""
        from catalog.models import ScrapedCategory

        parent = reconciler.upsert_category(ScrapedCategory(
            title='Fiction', slug='fiction', url='https://x/collections/fiction')).entity
        reconciler.upsert_category(ScrapedCategory(
            title='Crime', slug='crime', url='https://x/collections/crime'),
            parent_id=parent.id)
        reconciler.upsert_category(ScrapedCategory(
            title='Fantasy', slug='fantasy', url='https://x/collections/fantasy'),
            parent_id=parent.id)

        children = reconciler.categories.find_children(parent.id)
        assert sorted(c.slug for c in children) == ['crime', 'fantasy']
        assert [c.slug for c in reconciler.categories.find_roots()] == ['fiction']

    def test_upsert_without_parent_keeps_existing_parent(self, reconciler):
        from catalog.models import ScrapedCategory

        parent = reconciler.upsert_category(ScrapedCategory(
            title='Fiction', slug='fiction', url='https://x/collections/fiction')).entity
        reconciler.upsert_category(ScrapedCategory(
            title='Crime', slug='crime', url='https://x/collections/crime'),
            parent_id=parent.id)
        reconciler.upsert_category(ScrapedCategory(
            title='Crime', slug='crime', url='https://x/collections/crime'))

        assert reconciler.categories.find_by_slug('crime').parent_id == parent.id

    def test_gaining_a_parent_drops_navigation_link(self, reconciler):
        """A former root moved under a parent no longer hangs off the navigation."""
        from catalog.models import ScrapedCategory, ScrapedNavigation

        books = reconciler.upsert_navigation(ScrapedNavigation(
            title='Books', slug='books', url='https://x/books')).entity
        fiction = reconciler.upsert_category(ScrapedCategory(
            title='Fiction', slug='fiction', url='https://x/collections/fiction'),
            navigation_id=books.id).entity
        crime = ScrapedCategory(title='Crime', slug='crime', url='https://x/collections/crime')
        reconciler.upsert_category(crime, navigation_id=books.id)
        assert reconciler.categories.find_by_slug('crime').navigation_id == books.id

        moved = reconciler.upsert_category(crime, parent_id=fiction.id,
                                           navigation_id=books.id).entity

        assert moved.parent_id == fiction.id
        assert moved.navigation_id is None
        assert [c.slug for c in reconciler.categories.find_by_navigation(books.id)] == ['fiction']

    def test_find_by_navigation_ordered(self, reconciler):
        from catalog.models import ScrapedCategory, ScrapedNavigation

        books = reconciler.upsert_navigation(ScrapedNavigation(
            title='Books', slug='books', url='https://x/books')).entity
        music = reconciler.upsert_navigation(ScrapedNavigation(
            title='Music', slug='music', url='https://x/music', order=1)).entity
        for title, order in (('Poetry', 2), ('Fiction', 0), ('Drama', 2)):
            reconciler.upsert_category(ScrapedCategory(
                title=title, slug=title.lower(), url=f'https://x/collections/{title.lower()}',
                order=order), navigation_id=books.id)
        reconciler.upsert_category(ScrapedCategory(
            title='Vinyl', slug='vinyl', url='https://x/collections/vinyl'), navigation_id=music.id)

        found = reconciler.categories.find_by_navigation(books.id)

        assert [c.slug for c in found] == ['fiction', 'drama', 'poetry']


class TestUpsertNavigation:
    """Test navigation upsert by slug."""

    def test_reorders_existing(self, reconciler, sqlite_conn):
        from catalog.models import ScrapedNavigation

        reconciler.upsert_navigation(ScrapedNavigation(
            title='Books', slug='books', url='https://x/books', order=0))
        result = reconciler.upsert_navigation(ScrapedNavigation(
            title='Books', slug='books', url='https://x/books', order=3))

        assert result.entity.order == 3
        assert count_rows(sqlite_conn, 'navigations') == 1


class TestUpsertProduct:
    """Test product upsert by source id."""

    def test_idempotent_on_identical_input(self, reconciler, clock):
        """Same candidate twice: same values, only last_scraped_at moves."""
        first = reconciler.upsert_product(make_product()).entity
        snapshot = dict(vars(first))

        clock.advance(hours=1)
        second = reconciler.upsert_product(make_product())

        assert second.changed_fields == {}
        stored = reconciler.products.find_by_source_id('the-hobbit')
        for name, value in snapshot.items():
            if name != 'last_scraped_at':
                assert getattr(stored, name) == value
        assert stored.last_scraped_at == clock.now

    def test_one_row_per_source_id(self, reconciler, sqlite_conn):
        """Varying field values for one key never create a second row."""
        for price in (4.99, 3.50, 5.25, None):
            reconciler.upsert_product(make_product(price=price))

        assert count_rows(sqlite_conn, 'products') == 1
        # None in the candidate leaves the last known price in place
        assert reconciler.products.find_by_source_id('the-hobbit').price == pytest.approx(5.25)

    def test_category_link(self, reconciler):
        from catalog.models import ScrapedCategory

        category = reconciler.upsert_category(ScrapedCategory(
            title='Fantasy', slug='fantasy', url='https://x/collections/fantasy')).entity
        product = reconciler.upsert_product(make_product(), category_id=category.id).entity

        assert product.category_id == category.id
        assert [p.source_id for p in reconciler.products.find_by_category(category.id)] == ['the-hobbit']

    def test_booleans_round_trip(self, reconciler):
        reconciler.upsert_product(make_product(in_stock=False))
        assert reconciler.products.find_by_source_id('the-hobbit').in_stock is False


class TestUpsertProductDetail:
    """Test detail upsert keyed by product id."""

    def _detail(self, **overrides):
        from catalog.models import ProductRef, ScrapedProductDetail
        fields = dict(
            description='A hobbit goes on an adventure.',
            publisher='HarperCollins',
            publication_date=date(1995, 9, 21),
            pages=320,
            specs={'Publisher': 'HarperCollins', 'Pages': '320'},
            ratings_avg=4.6,
            reviews_count=2,
            related_products=[ProductRef('silmarillion', 'The Silmarillion',
                                         'https://x/products/silmarillion')],
        )
        fields.update(overrides)
        return ScrapedProductDetail(**fields)

    def test_create_and_read_back(self, reconciler):
        product = reconciler.upsert_product(make_product()).entity
        reconciler.upsert_product_detail(product.id, self._detail())

        stored = reconciler.details.find_by_product_id(product.id)
        assert stored.publisher == 'HarperCollins'
        assert stored.publication_date == date(1995, 9, 21)
        assert stored.pages == 320
        assert stored.specs == {'Publisher': 'HarperCollins', 'Pages': '320'}
        assert stored.related_products == [{
            'sourceId': 'silmarillion', 'title': 'The Silmarillion',
            'url': 'https://x/products/silmarillion',
        }]
        assert stored.recommended_products == []

    def test_collections_replaced_not_merged(self, reconciler, sqlite_conn):
        """New specs and related lists replace the old ones entirely, even when empty."""
        product = reconciler.upsert_product(make_product()).entity
        reconciler.upsert_product_detail(product.id, self._detail())
        reconciler.upsert_product_detail(product.id, self._detail(
            description=None, specs={'Language': 'English'}, related_products=[]))

        stored = reconciler.details.find_by_product_id(product.id)
        assert stored.specs == {'Language': 'English'}
        assert stored.related_products == []
        # Scalars absent from the candidate are kept
        assert stored.description == 'A hobbit goes on an adventure.'
        assert count_rows(sqlite_conn, 'product_details') == 1

    def test_review_count_falls_back_to_scraped_reviews(self, reconciler):
        from catalog.models import ScrapedReview

        product = reconciler.upsert_product(make_product()).entity
        reconciler.upsert_product_detail(product.id, self._detail(
            reviews_count=None,
            reviews=[ScrapedReview(text='Good'), ScrapedReview(rating=3)]))

        assert reconciler.details.find_by_product_id(product.id).reviews_count == 2


class TestReplaceReviews:
    """Test full replacement of a product's reviews."""

    def test_replaces_all_existing(self, reconciler, sqlite_conn):
        """N old reviews + batch of M -> exactly the M new ones remain."""
        from catalog.models import ScrapedReview

        product = reconciler.upsert_product(make_product()).entity
        reconciler.replace_reviews(product.id, [
            ScrapedReview(author='Old 1', text='First'),
            ScrapedReview(author='Old 2', text='Second'),
            ScrapedReview(author='Old 3', rating=2),
        ])
        old_ids = {r.id for r in reconciler.reviews.find_by_product(product.id)}

        new = reconciler.replace_reviews(product.id, [
            ScrapedReview(author='New 1', rating=5, text='Great',
                          review_date=date(2023, 5, 1), verified=True),
            ScrapedReview(author='New 2', rating=4),
        ])

        stored = reconciler.reviews.find_by_product(product.id)
        assert len(stored) == 2
        assert {r.author for r in stored} == {'New 1', 'New 2'}
        assert not old_ids & {r.id for r in stored}
        assert [r.id for r in new] == [r.id for r in stored]
        assert stored[0].review_date == date(2023, 5, 1)
        assert stored[0].verified is True

    def test_other_products_untouched(self, reconciler):
        from catalog.models import ScrapedReview

        hobbit = reconciler.upsert_product(make_product('the-hobbit')).entity
        dune = reconciler.upsert_product(make_product('dune', title='Dune')).entity
        reconciler.replace_reviews(dune.id, [ScrapedReview(text='Spice')])
        reconciler.replace_reviews(hobbit.id, [ScrapedReview(text='Second breakfast')])

        assert [r.text for r in reconciler.reviews.find_by_product(dune.id)] == ['Spice']

    def test_rating_summary(self, reconciler):
        from catalog.models import ScrapedReview

        product = reconciler.upsert_product(make_product()).entity
        reconciler.replace_reviews(product.id, [
            ScrapedReview(rating=5), ScrapedReview(rating=4), ScrapedReview(text='No stars'),
        ])

        average, count = reconciler.reviews.rating_summary(product.id)
        assert average == pytest.approx(4.5)
        assert count == 2


class TestTouchProduct:
    """Test advancing a product's scrape timestamp."""

    def test_only_timestamp_changes(self, reconciler, clock):
        product = reconciler.upsert_product(make_product()).entity
        clock.advance(hours=30)

        reconciler.touch_product(product)

        stored = reconciler.products.find_by_source_id('the-hobbit')
        assert stored.last_scraped_at == clock.now
        assert stored.price == pytest.approx(4.99)
