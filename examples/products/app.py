"""Products API: a route group with typed results and filters.

Demonstrates a ``/products`` group with constrained route parameters,
typed results (``ok``, ``created``, ``not_found``, ``validation_problem``),
service injection, a timing filter, response caching for reads and an
API-key authorizer guarding writes.

Run:
    uvicorn app:app
"""

import time
from dataclasses import dataclass, replace
from decimal import Decimal

from perch import (
    App,
    InvocationContext,
    Next,
    Request,
    Unauthorized,
    created,
    no_content,
    not_found,
    ok,
    validation_problem,
)
from perch.filters import MemoryCacheStore, ResponseCache

API_KEY = "secret-key"


@dataclass(frozen=True, slots=True)
class Product:
    id: int
    name: str
    price: Decimal


@dataclass(frozen=True, slots=True)
class ProductInput:
    name: str
    price: Decimal


class ProductStore:
    """In-memory product catalog."""

    def __init__(self) -> None:
        self._items: dict[int, Product] = {}
        self._next_id = 1

    def all(self) -> list[Product]:
        return list(self._items.values())

    def get(self, product_id: int) -> Product | None:
        return self._items.get(product_id)

    def add(self, name: str, price: Decimal) -> Product:
        product = Product(self._next_id, name, price)
        self._items[product.id] = product
        self._next_id += 1
        return product

    def update(self, product_id: int, name: str, price: Decimal) -> Product | None:
        if product_id not in self._items:
            return None
        product = replace(self._items[product_id], name=name, price=price)
        self._items[product_id] = product
        return product

    def remove(self, product_id: int) -> bool:
        return self._items.pop(product_id, None) is not None


def authorize(request: Request, policy: str | None) -> bool:
    key = request.headers.get("x-api-key")
    if key is None:
        raise Unauthorized("Missing API key", challenge="ApiKey")
    return key == API_KEY


async def timing(ctx: InvocationContext, next: Next):
    start = time.perf_counter()
    result = await next(ctx)
    ctx.items["elapsed"] = time.perf_counter() - start
    return result


def validate(data: ProductInput) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    if not data.name.strip():
        errors["name"] = ["Name is required."]
    if data.price <= 0:
        errors["price"] = ["Price must be positive."]
    return errors


store = ProductStore()
store.add("Keyboard", Decimal("49.90"))
store.add("Mouse", Decimal("19.50"))

app = App(authorizer=authorize)
app.provide(ProductStore, lambda: store)

products = app.group("/products").with_tags("products").add_filter(timing)
reads = products.group("").add_filter(ResponseCache(MemoryCacheStore(), ttl=30))
writes = products.group("").require_authorization("products:write")


@reads.get("/", name="products")
def list_products(store: ProductStore, q: str | None = None):
    items = store.all()
    if q:
        items = [p for p in items if q.lower() in p.name.lower()]
    return ok(items)


@reads.get("/{id:int:min(1)}", name="product")
def get_product(id: int, store: ProductStore):
    product = store.get(id)
    return ok(product) if product else not_found()


@writes.post("/")
def create_product(data: ProductInput, store: ProductStore):
    errors = validate(data)
    if errors:
        return validation_problem(errors)
    product = store.add(data.name, data.price)
    return created(app.url_for("product", id=product.id), product)


@writes.put("/{id:int:min(1)}")
def update_product(id: int, data: ProductInput, store: ProductStore):
    errors = validate(data)
    if errors:
        return validation_problem(errors)
    product = store.update(id, data.name, data.price)
    return ok(product) if product else not_found()


@writes.delete("/{id:int:min(1)}")
def delete_product(id: int, store: ProductStore):
    return no_content() if store.remove(id) else not_found()
