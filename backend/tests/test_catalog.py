from shop.models.category import Category
from shop.services.cache import CacheKeys

from conftest import auth_headers, create_product


async def create_category(db, name="Roupa", slug="roupa", parent_id=None):
    category = Category(name=name, slug=slug, parent_id=parent_id, is_active=True, sort_order=0)
    db.add(category)
    await db.commit()
    return category


async def test_admin_creates_category(client, admin, fake_redis):
    headers = auth_headers(admin)
    response = await client.post("/api/categories", json={"name": " Calçado ", "slug": "calcado"}, headers=headers)
    assert response.status_code == 201
    assert response.json()["name"] == "Calçado"

    response = await client.post("/api/categories", json={"name": "Outro", "slug": "calcado"}, headers=headers)
    assert response.status_code == 409

    response = await client.post("/api/categories", json={"name": "Mau", "slug": "Com Espaços"}, headers=headers)
    assert response.status_code == 400


async def test_category_write_requires_admin(client, customer):
    response = await client.post("/api/categories", json={"name": "X", "slug": "x"},
                                 headers=auth_headers(customer))
    assert response.status_code == 403


async def test_category_list_is_cached(client, db, fake_redis):
    await create_category(db)
    response = await client.get("/api/categories")
    assert [c["slug"] for c in response.json()] == ["roupa"]
    assert CacheKeys.categories() in fake_redis.store


async def test_category_tree(client, db):
    parent = await create_category(db)
    await create_category(db, name="Vestidos", slug="vestidos", parent_id=parent.id)

    tree = (await client.get("/api/categories/tree")).json()
    assert len(tree) == 1
    assert tree[0]["children_count"] == 1
    assert [child["slug"] for child in tree[0]["children"]] == ["vestidos"]


async def test_category_with_children_cannot_be_deleted(client, db, admin):
    parent = await create_category(db)
    child = await create_category(db, name="Vestidos", slug="vestidos", parent_id=parent.id)
    headers = auth_headers(admin)

    response = await client.delete(f"/api/categories/{parent.id}", headers=headers)
    assert response.status_code == 400

    response = await client.delete(f"/api/categories/{child.id}", headers=headers)
    assert response.status_code == 200


async def test_product_listing_filters_and_sort(client, db):
    category = await create_category(db)
    await create_product(db, name="Camisola", slug="camisola", price="20.00", category_id=category.id)
    await create_product(db, name="Casaco", slug="casaco", price="80.00", category_id=category.id)
    await create_product(db, name="Meias", slug="meias", price="5.00")
    await create_product(db, name="Rascunho", slug="rascunho", status="DRAFT")

    body = (await client.get("/api/products", params={"sort": "price_asc"})).json()
    assert [p["slug"] for p in body["products"]] == ["meias", "camisola", "casaco"]
    assert body["pagination"] == {"page": 1, "limit": 12, "total": 3, "pages": 1}

    body = (await client.get("/api/products", params={"category": "roupa", "min_price": 30})).json()
    assert [p["slug"] for p in body["products"]] == ["casaco"]

    body = (await client.get("/api/products", params={"search": "mei"})).json()
    assert body["pagination"]["total"] == 1

    body = (await client.get("/api/products", params={"category": "inexistente"})).json()
    assert body["products"] == []


async def test_product_detail_hides_drafts(client, db, product):
    response = await client.get(f"/api/products/{product.slug}")
    assert response.status_code == 200
    assert response.json()["id"] == product.id

    draft = await create_product(db, slug="escondido", status="DRAFT")
    assert (await client.get(f"/api/products/{draft.id}")).status_code == 404


async def test_related_products(client, db):
    category = await create_category(db)
    main = await create_product(db, slug="principal", category_id=category.id)
    await create_product(db, slug="irmao", category_id=category.id)
    await create_product(db, slug="sozinho")

    related = (await client.get(f"/api/products/{main.id}/related")).json()
    assert [p["slug"] for p in related] == ["irmao"]
