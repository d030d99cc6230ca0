"""商品分类 API（读取公开，写入需管理员）"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, require_admin
from shop.models.category import Category
from shop.models.product import Product
from shop.models.user import User
from shop.schemas.category import CategoryCreate, CategoryUpdate, CategoryResponse, CategoryTreeNode
from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType, AuditSeverity
from shop.services.cache import cache, CacheKeys, CacheTTL

router = APIRouter()


async def _count_map(db: AsyncSession, column) -> Dict[int, int]:
    result = await db.execute(select(column, func.count()).where(column.isnot(None)).group_by(column))
    return {row[0]: row[1] for row in result.all()}


def build_response(
    category: Category,
    names: Dict[int, str],
    children: Dict[int, int],
    products: Dict[int, int]) -> CategoryResponse:
    """构建响应对象"""
    return CategoryResponse(
        id=category.id,
        name=category.name,
        slug=category.slug,
        parent_id=category.parent_id,
        description=category.description,
        image=category.image,
        sort_order=category.sort_order or 0,
        is_active=category.is_active,
        parent_name=names.get(category.parent_id) if category.parent_id else None,
        children_count=children.get(category.id, 0),
        products_count=products.get(category.id, 0),
        created_at=category.created_at,
    )


async def _load_responses(db: AsyncSession, only_active: bool = True) -> List[CategoryResponse]:
    query = select(Category).order_by(Category.sort_order, Category.name)
    if only_active:
        query = query.where(Category.is_active == True)
    categories = (await db.execute(query)).scalars().all()

    names = {c.id: c.name for c in (await db.execute(select(Category))).scalars().all()}
    children = await _count_map(db, Category.parent_id)
    products = await _count_map(db, Product.category_id)
    return [build_response(c, names, children, products) for c in categories]


async def invalidate_category_cache(category_id: int = None) -> None:
    await cache.invalidate_pattern("categories:*")
    if category_id is not None:
        await cache.delete(CacheKeys.category(category_id))


@router.get("", response_model=List[CategoryResponse])
async def list_categories(db: AsyncSession = Depends(get_db)) -> Any:
    """获取启用的分类列表"""
    async def fetch():
        return [c.model_dump(mode="json") for c in await _load_responses(db)]

    return await cache.get_or_set(CacheKeys.categories(), fetch, CacheTTL.LONG)


@router.get("/tree", response_model=List[CategoryTreeNode])
async def get_category_tree(db: AsyncSession = Depends(get_db)) -> Any:
    """获取分类树"""
    async def fetch():
        responses = await _load_responses(db)
        nodes = {c.id: CategoryTreeNode(**c.model_dump()) for c in responses}
        roots = []
        for node in nodes.values():
            parent = nodes.get(node.parent_id) if node.parent_id else None
            if parent is not None:
                parent.children.append(node)
            else:
                roots.append(node)
        return [n.model_dump(mode="json") for n in roots]

    return await cache.get_or_set(CacheKeys.category_hierarchy(), fetch, CacheTTL.LONG)


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(category_id: int, db: AsyncSession = Depends(get_db)) -> Any:
    """获取分类详情"""
    cached = await cache.get(CacheKeys.category(category_id))
    if cached is not None:
        return cached

    category = await db.get(Category, category_id)
    if not category or not category.is_active:
        raise HTTPException(status_code=404, detail="分类不存在")

    names = {c.id: c.name for c in (await db.execute(select(Category))).scalars().all()}
    response = build_response(
        category, names,
        await _count_map(db, Category.parent_id),
        await _count_map(db, Product.category_id),
    )
    await cache.set(CacheKeys.category(category_id), response.model_dump(mode="json"), CacheTTL.LONG)
    return response


async def _ensure_slug_unique(db: AsyncSession, slug: str, exclude_id: int = None) -> None:
    query = select(Category).where(Category.slug == slug)
    if exclude_id:
        query = query.where(Category.id != exclude_id)
    if (await db.execute(query)).scalar_one_or_none():
        raise HTTPException(status_code=409, detail="分类标识已存在")


@router.post("", response_model=CategoryResponse, status_code=201)
async def create_category(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    category_in: CategoryCreate) -> Any:
    """创建分类"""
    await _ensure_slug_unique(db, category_in.slug)
    if category_in.parent_id and not await db.get(Category, category_in.parent_id):
        raise HTTPException(status_code=400, detail="父分类不存在")

    category = Category(**category_in.model_dump(), is_active=True)
    db.add(category)
    await db.commit()

    await invalidate_category_cache()
    await audit_logger.log_event(
        AuditEventType.CATEGORY_CREATED, "category", "create",
        user_id=admin.id, user_email=admin.email, resource_id=category.id,
        details={"name": category.name, "slug": category.slug}, request=request,
    )
    names = {category.parent_id: (await db.get(Category, category.parent_id)).name} if category.parent_id else {}
    return build_response(category, names, {}, {})


@router.put("/{category_id}", response_model=CategoryResponse)
async def update_category(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    category_id: int,
    category_in: CategoryUpdate) -> Any:
    """更新分类"""
    category = await db.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="分类不存在")

    update_data = category_in.model_dump(exclude_unset=True)
    if "slug" in update_data:
        await _ensure_slug_unique(db, update_data["slug"], exclude_id=category_id)
    if update_data.get("parent_id") == category_id:
        raise HTTPException(status_code=400, detail="不能将分类设为自己的子分类")

    for field, value in update_data.items():
        setattr(category, field, value)
    await db.commit()

    await invalidate_category_cache(category_id)
    await audit_logger.log_event(
        AuditEventType.CATEGORY_UPDATED, "category", "update",
        user_id=admin.id, user_email=admin.email, resource_id=category_id,
        details=update_data, request=request,
    )
    names = {c.id: c.name for c in (await db.execute(select(Category))).scalars().all()}
    return build_response(
        category, names,
        await _count_map(db, Category.parent_id),
        await _count_map(db, Product.category_id),
    )


@router.delete("/{category_id}")
async def delete_category(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    category_id: int) -> Any:
    """删除分类（有子分类或商品时不允许删除）"""
    category = await db.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="分类不存在")

    children = (await db.execute(
        select(func.count(Category.id)).where(Category.parent_id == category_id)
    )).scalar_one()
    if children:
        raise HTTPException(status_code=400, detail=f"该分类下有 {children} 个子分类，不能删除")

    products = (await db.execute(
        select(func.count(Product.id)).where(Product.category_id == category_id)
    )).scalar_one()
    if products:
        raise HTTPException(status_code=400, detail=f"该分类下有 {products} 个商品，不能删除")

    await db.delete(category)
    await db.commit()

    await invalidate_category_cache(category_id)
    await audit_logger.log_event(
        AuditEventType.CATEGORY_DELETED, "category", "delete",
        severity=AuditSeverity.MEDIUM, user_id=admin.id, user_email=admin.email,
        resource_id=category_id, request=request,
    )
    return {"message": "删除成功"}
