"""
Catalog service tests.

Variants never accept a stock quantity; on-hand shown by the catalog is
always the ledger sum.
"""

import pytest

from retailpos.errors import ConflictError, NotFoundError, ValidationError
from retailpos.services import catalog_service, ledger_service


class TestCatalogWrites:

    def test_brand_product_variant_chain(self, db_session):
        brand = catalog_service.create_brand(name="Initech", description="Office wear")
        product = catalog_service.create_product(brand_id=brand.id, name="Polo", category="Shirts")
        variant = catalog_service.create_variant(
            product_id=product.id, sku="POLO-S", barcode="  ", size="S", price_cents="1999",
        )

        assert variant.price_cents == 1999
        assert variant.barcode is None
        data = catalog_service.variant_with_stock(variant)
        assert data["on_hand"] == 0
        assert data["brand_name"] == "Initech"
        assert [b.name for b in catalog_service.list_brands()] == ["Initech"]
        assert [p.id for p in catalog_service.list_products(brand_id=brand.id)] == [product.id]

    @pytest.mark.parametrize("field", ["quantity", "on_hand", "stock"])
    def test_create_variant_rejects_quantity(self, db_session, product, field):
        with pytest.raises(ValidationError) as exc:
            catalog_service.create_variant(product_id=product.id, sku="NEW-1", **{field: 5})
        assert "ledger" in exc.value.message

    def test_update_variant_rejects_quantity(self, db_session, variant):
        with pytest.raises(ValidationError):
            catalog_service.update_variant(variant.id, quantity=50)
        assert ledger_service.compute_on_hand(variant.id) == 10

    def test_update_variant_pricing(self, db_session, variant):
        updated = catalog_service.update_variant(variant.id, price_cents=1250, color="Navy")
        assert updated.price_cents == 1250
        assert updated.color == "Navy"

    def test_negative_price_rejected(self, db_session, variant):
        with pytest.raises(ValidationError):
            catalog_service.update_variant(variant.id, price_cents=-1)

    def test_duplicate_sku(self, db_session, variant, product):
        with pytest.raises(ConflictError):
            catalog_service.create_variant(product_id=product.id, sku=variant.sku)

    def test_duplicate_barcode_on_update(self, db_session, variant, other_variant):
        with pytest.raises(ConflictError):
            catalog_service.update_variant(other_variant.id, barcode=variant.barcode)

    def test_product_requires_existing_brand(self, db_session):
        with pytest.raises(NotFoundError):
            catalog_service.create_product(brand_id=404, name="Ghost")

    def test_missing_required_fields(self, db_session):
        with pytest.raises(ValidationError):
            catalog_service.create_brand(description="nameless")


class TestCatalogReads:

    def test_lookup_by_barcode_then_sku(self, db_session, variant):
        assert catalog_service.lookup_variant(variant.barcode).id == variant.id
        assert catalog_service.lookup_variant(variant.sku).id == variant.id
        with pytest.raises(NotFoundError):
            catalog_service.lookup_variant("NOPE")

    def test_inventory_listing_with_on_hand(self, db_session, variant, other_variant, empty_variant):
        result = catalog_service.list_inventory(page=1, page_size=2)

        assert result["pagination"] == {"page": 1, "page_size": 2, "total": 3, "page_count": 2}
        # Same brand and product: ordered by SKU
        assert [row["sku"] for row in result["data"]] == ["TEE-L-WHT", "TEE-M-BLK"]
        assert [row["on_hand"] for row in result["data"]] == [4, 10]

        second = catalog_service.list_inventory(page=2, page_size=2)
        assert [row["sku"] for row in second["data"]] == ["TEE-S-RED"]
        assert second["data"][0]["on_hand"] == 0

    def test_inventory_search(self, db_session, variant, other_variant):
        result = catalog_service.list_inventory(search="wht")
        assert [row["variant_id"] for row in result["data"]] == [other_variant.id]
