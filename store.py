import logging
from dataclasses import dataclass, asdict

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import ConstraintViolation, DuplicateName, StorageError
from models import Category, Item

logger = logging.getLogger(__name__)

# SQLite INTEGER is a signed 64-bit value
MIN_ID = -(2 ** 63)
MAX_ID = 2 ** 63 - 1


@dataclass(frozen=True)
class CatalogItem:
    id: int
    name: str
    category: str
    image: str

    def to_dict(self):
        return asdict(self)


class CatalogStore:
    def __init__(self, session, max_attempts=3):
        self.session = session
        self.max_attempts = max_attempts

    # --- categories ---

    def find_category_id_by_name(self, name):
        try:
            row = self.session.query(Category.id).filter_by(name=name).first()
        except SQLAlchemyError as e:
            raise self._storage_error("category lookup", e) from e
        return row[0] if row else None

    def create_category(self, name):
        category_id = self._insert_category(name)
        self._commit()
        return category_id

    def list_categories(self):
        try:
            rows = self.session.query(Category.id, Category.name).order_by(Category.id).all()
        except SQLAlchemyError as e:
            raise self._storage_error("category listing", e) from e
        return [{"id": category_id, "name": name} for category_id, name in rows]

    # --- items ---

    def create_item(self, name, category_id, image_filename):
        item_id = self._insert_item(name, category_id, image_filename)
        self._commit()
        return item_id

    def add_item(self, name, category_name, image_filename):
        """Find or create the category and insert the item in one commit.

        A lost race on a new category name rolls everything back and retries.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                category_id = self.find_category_id_by_name(category_name)
                if category_id is None:
                    category_id = self._insert_category(category_name)
                    logger.info("Created category %r (id=%s)", category_name, category_id)
                item_id = self._insert_item(name, category_id, image_filename)
                self._commit()
                return item_id
            except DuplicateName:
                if attempt == self.max_attempts:
                    raise
                logger.warning(
                    "Category %r created concurrently, retrying (attempt %d/%d)",
                    category_name, attempt, self.max_attempts,
                )

    def get_all_items(self):
        try:
            rows = self._item_query().order_by(Item.id).all()
        except SQLAlchemyError as e:
            raise self._storage_error("item listing", e) from e
        return [CatalogItem(*row) for row in rows]

    def get_item_by_id(self, item_id):
        if not MIN_ID <= item_id <= MAX_ID:
            return None
        try:
            row = self._item_query().filter(Item.id == item_id).first()
        except SQLAlchemyError as e:
            raise self._storage_error("item lookup", e) from e
        return CatalogItem(*row) if row else None

    # --- internals ---

    def _item_query(self):
        return self.session.query(Item.id, Item.name, Category.name, Item.image).join(
            Category, Item.category_id == Category.id
        )

    def _insert_category(self, name):
        category = Category(name=name)
        self.session.add(category)
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateName(f"category {name!r} already exists") from e
        except SQLAlchemyError as e:
            raise self._storage_error("category insert", e) from e
        return category.id

    def _insert_item(self, name, category_id, image_filename):
        exists = False
        if MIN_ID <= category_id <= MAX_ID:
            try:
                exists = self.session.get(Category, category_id) is not None
            except SQLAlchemyError as e:
                raise self._storage_error("category lookup", e) from e
        if not exists:
            self.session.rollback()
            raise ConstraintViolation(f"category id {category_id} does not exist")

        item = Item(name=name, category_id=category_id, image=image_filename)
        self.session.add(item)
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise ConstraintViolation(f"item {name!r} violates a constraint") from e
        except SQLAlchemyError as e:
            raise self._storage_error("item insert", e) from e
        return item.id

    def _commit(self):
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise ConstraintViolation(str(e.orig)) from e
        except SQLAlchemyError as e:
            raise self._storage_error("commit", e) from e

    def _storage_error(self, action, exc):
        self.session.rollback()
        logger.error("Storage failure during %s: %s", action, exc)
        return StorageError(f"{action} failed: {exc}")
