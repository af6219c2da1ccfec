import datetime
import os

from sqlalchemy import create_engine
from sqlalchemy import Column, Boolean, String, Integer, Numeric, DateTime, JSON, Text
from sqlalchemy import ForeignKey
from sqlalchemy.orm import relationship, DeclarativeBase
from sqlalchemy.schema import Index, UniqueConstraint


class Base(DeclarativeBase):
    pass


def db_connect():
    """
    Connects to the catalog database (PostgreSQL in production, SQLite for local runs).

    The rebuild only ever reads from this database, one page per transaction.
    """
    database_url = os.getenv('DATABASE_URL')

    if database_url:
        return create_engine(
            database_url,
            pool_size=5,          # The rebuild is sequential; a small pool is plenty
            max_overflow=5,
            pool_timeout=30,
            pool_recycle=1800     # Long rebuilds outlive idle connection limits
        )
    else:
        current_dir = os.path.dirname(os.path.abspath(__file__))
        project_root = os.path.dirname(current_dir)
        db_path = os.path.join(project_root, 'catalog_db.sqlite')
        print("WARNING: DATABASE_URL not set. Using local SQLite.")
        return create_engine(f'sqlite:///{db_path}')


def create_tables(engine):
    """
    Creates all the tables defined below if they don't already exist.
    """
    Base.metadata.create_all(engine)


class Product(Base):
    """
    A catalog item. One index document is built per active product.

    Whether a product is "active" is decided by its date window and the
    archived flag; see catalog.SqlCatalogStore.
    """
    __tablename__ = 'product'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    manufacturer = Column(String)
    model = Column(String)
    retail_price = Column(Numeric(19, 5))
    active_start_date = Column(DateTime, nullable=False, default=datetime.datetime.now)
    active_end_date = Column(DateTime, nullable=True)
    archived = Column(Boolean, default=False, nullable=False)

    # Categories this product is directly assigned to
    parent_category_xrefs = relationship(
        "CategoryProductXref",
        back_populates="product",
        order_by="CategoryProductXref.id",
    )
    # Open-ended attribute store ("product_attributes.<name>" in field paths)
    product_attributes = relationship(
        "ProductAttribute",
        back_populates="product",
        order_by="ProductAttribute.id",
    )
    translations = relationship("ProductTranslation", back_populates="product")

    __table_args__ = (
        Index('ix_product_active_window', 'active_start_date', 'active_end_date'),
    )


class Category(Base):
    """
    A catalog category. Categories form a graph, not a tree: a category may
    have several parents, and two parents may share an ancestor.
    """
    __tablename__ = 'category'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)

    # Products directly assigned here, in merchandising order
    product_xrefs = relationship(
        "CategoryProductXref",
        back_populates="category",
        order_by=lambda: [CategoryProductXref.display_order, CategoryProductXref.id],
    )
    parent_category_xrefs = relationship(
        "CategoryXref",
        foreign_keys="CategoryXref.sub_category_id",
        back_populates="sub_category",
        order_by="CategoryXref.id",
    )

    @property
    def parent_categories(self):
        return [xref.category for xref in self.parent_category_xrefs]


class CategoryProductXref(Base):
    """
    Links a Product to a Category with a position inside that category.
    """
    __tablename__ = 'category_product_xref'

    id = Column(Integer, primary_key=True)
    category_id = Column(Integer, ForeignKey('category.id'), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey('product.id'), nullable=False, index=True)
    display_order = Column(Integer, default=0, nullable=False)

    category = relationship("Category", back_populates="product_xrefs")
    product = relationship("Product", back_populates="parent_category_xrefs")

    __table_args__ = (
        UniqueConstraint('category_id', 'product_id', name='uq_category_product'),
    )


class CategoryXref(Base):
    """
    Links a child category (sub_category) to one of its parents (category).
    """
    __tablename__ = 'category_xref'

    id = Column(Integer, primary_key=True)
    sub_category_id = Column(Integer, ForeignKey('category.id'), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey('category.id'), nullable=False, index=True)
    display_order = Column(Integer, default=0, nullable=False)

    sub_category = relationship("Category", foreign_keys=[sub_category_id], back_populates="parent_category_xrefs")
    category = relationship("Category", foreign_keys=[category_id])


class ProductAttribute(Base):
    """
    A named, merchant-defined attribute of a product (e.g. "heat_range" = "Mild").
    """
    __tablename__ = 'product_attribute'

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey('product.id'), nullable=False, index=True)
    name = Column(String, nullable=False)
    value = Column(String)

    product = relationship("Product", back_populates="product_attributes")


class ProductTranslation(Base):
    """
    A translated value of one product property for one locale.
    """
    __tablename__ = 'product_translation'

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey('product.id'), nullable=False, index=True)
    field_name = Column(String, nullable=False) # property path, e.g. "description"
    locale_code = Column(String, nullable=False) # e.g. "es_ES"
    translated_value = Column(Text)

    product = relationship("Product", back_populates="translations")

    __table_args__ = (
        UniqueConstraint('product_id', 'field_name', 'locale_code', name='uq_product_translation'),
    )


class Locale(Base):
    """
    A locale the storefront serves. Every locale gets its own copy of
    translatable fields in the index.
    """
    __tablename__ = 'locale'

    code = Column(String, primary_key=True) # e.g. "en_US"
    friendly_name = Column(String)
    default_flag = Column(Boolean, default=False, nullable=False)


class SearchField(Base):
    """
    Field registry row: which product property is indexed, and how.

    searchable_field_types holds type tags (see fields.FieldType), e.g. ["t", "s"].
    """
    __tablename__ = 'search_field'

    id = Column(Integer, primary_key=True)
    entity = Column(String, nullable=False, default="product")
    property_name = Column(String, nullable=False)
    abbreviation = Column(String, nullable=False)
    searchable = Column(Boolean, default=False, nullable=False)
    searchable_field_types = Column(JSON, default=list)
    facet_field_type = Column(String, nullable=True)
    translatable = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint('entity', 'abbreviation', name='uq_search_field_abbreviation'),
    )
