from decimal import Decimal

from sqlalchemy import ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_search.db.session import Base
from catalog_search.models.common import IntIdMixin, TimestampMixin
from catalog_search.models.lookups import Brand, LensClass, LensType, Material, Photochromic, Supplier, Treatment


class Product(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "products"
    internal_code: Mapped[str | None] = mapped_column(String(60), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="enabled", nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    brand_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"), nullable=True, index=True)
    material_id: Mapped[int | None] = mapped_column(ForeignKey("materials.id"), nullable=True, index=True)
    lens_class_id: Mapped[int | None] = mapped_column(ForeignKey("lens_classes.id"), nullable=True, index=True)
    treatment_id: Mapped[int | None] = mapped_column(ForeignKey("treatments.id"), nullable=True, index=True)
    photochromic_id: Mapped[int | None] = mapped_column(ForeignKey("photochromics.id"), nullable=True, index=True)
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id"), nullable=True, index=True)
    type_id: Mapped[int | None] = mapped_column(ForeignKey("lens_types.id"), nullable=True, index=True)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    brand: Mapped[Brand | None] = relationship(back_populates="products")
    material: Mapped[Material | None] = relationship(back_populates="products")
    lens_class: Mapped[LensClass | None] = relationship(back_populates="products")
    treatment: Mapped[Treatment | None] = relationship(back_populates="products")
    photochromic: Mapped[Photochromic | None] = relationship(back_populates="products")
    supplier: Mapped[Supplier | None] = relationship(back_populates="products")
    lens_type: Mapped[LensType | None] = relationship(back_populates="products")
