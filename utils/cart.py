"""
Cart store and guest-to-user cart merge.

Lines are keyed by (owner_id, artwork_id, item_type, print_size); adding a line
that already exists sums the quantity. Prices are read live from the catalog,
the cart is never a price snapshot.
"""
import hashlib
import json
from decimal import Decimal
from typing import Iterable, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import logger
from core.errors import NotFound, OutOfStock, Forbidden, ValidationError
from models.artwork import Artwork
from models.cart import CartItem, GuestCartMerge
from models.order import ItemType

MAX_LINE_QUANTITY = 99


def parse_item_type(value) -> ItemType:
    if isinstance(value, ItemType):
        return value
    try:
        return ItemType(str(value or "").strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown item type: {value}")


def normalize_line(item_type, print_size: Optional[str], quantity) -> tuple:
    """Return (ItemType, print_size, quantity) with the per-type rules applied."""
    kind = parse_item_type(item_type)
    try:
        qty = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a whole number")
    if qty < 1:
        raise ValidationError("Quantity must be at least 1")
    if qty > MAX_LINE_QUANTITY:
        raise ValidationError(f"Quantity cannot exceed {MAX_LINE_QUANTITY}")

    if kind == ItemType.ORIGINAL:
        # One-of-a-kind
        return kind, None, 1
    size = (print_size or "").strip()
    if not size:
        raise ValidationError("Print size is required for prints")
    return kind, size, qty


def _find_line(db: Session, owner_id: str, artwork_id: str, kind: ItemType, size: Optional[str]) -> Optional[CartItem]:
    q = db.query(CartItem).filter(
        CartItem.owner_id == owner_id,
        CartItem.artwork_id == artwork_id,
        CartItem.item_type == kind,
    )
    q = q.filter(CartItem.print_size.is_(None)) if size is None else q.filter(CartItem.print_size == size)
    return q.first()


def _upsert_line(db: Session, owner_id: str, artwork_id: str, kind: ItemType, size: Optional[str], qty: int) -> CartItem:
    line = _find_line(db, owner_id, artwork_id, kind, size)
    if line:
        if kind == ItemType.ORIGINAL:
            line.quantity = 1
        else:
            line.quantity = min(line.quantity + qty, MAX_LINE_QUANTITY)
        return line
    line = CartItem(owner_id=owner_id, artwork_id=artwork_id, item_type=kind, print_size=size, quantity=qty)
    db.add(line)
    db.flush()
    return line


def _forget_merges(db: Session, owner_id: str) -> None:
    """A changed cart makes earlier guest merges eligible again."""
    db.query(GuestCartMerge).filter(GuestCartMerge.owner_id == owner_id).delete(synchronize_session=False)


def _owned_line(db: Session, owner_id: str, item_id: int) -> CartItem:
    line = db.query(CartItem).filter(CartItem.id == item_id).first()
    if not line:
        raise NotFound("Cart item not found")
    if line.owner_id != owner_id:
        raise Forbidden("Cart item belongs to another cart")
    return line


def add_item(db: Session, owner_id: str, artwork_id: str, quantity=1, item_type=ItemType.ORIGINAL, print_size: Optional[str] = None) -> CartItem:
    kind, size, qty = normalize_line(item_type, print_size, quantity)
    artwork = db.query(Artwork).filter(Artwork.id == artwork_id).first()
    if not artwork:
        raise NotFound("Artwork not found")
    if kind == ItemType.ORIGINAL and not artwork.in_stock:
        raise OutOfStock(artwork.title)

    line = _upsert_line(db, owner_id, artwork_id, kind, size, qty)
    _forget_merges(db, owner_id)
    db.commit()
    db.refresh(line)
    logger.info(f"[cart] {owner_id} added {kind.value} {artwork_id} x{qty}")
    return line


def update_quantity(db: Session, owner_id: str, item_id: int, quantity) -> CartItem:
    line = _owned_line(db, owner_id, item_id)
    _, _, qty = normalize_line(line.item_type, line.print_size, quantity)
    line.quantity = qty
    _forget_merges(db, owner_id)
    db.commit()
    db.refresh(line)
    return line


def remove_item(db: Session, owner_id: str, item_id: int) -> None:
    line = _owned_line(db, owner_id, item_id)
    db.delete(line)
    _forget_merges(db, owner_id)
    db.commit()


def clear(db: Session, owner_id: str, commit: bool = True) -> int:
    removed = db.query(CartItem).filter(CartItem.owner_id == owner_id).delete(synchronize_session=False)
    _forget_merges(db, owner_id)
    if commit:
        db.commit()
    return removed


def get_lines(db: Session, owner_id: str) -> list[CartItem]:
    return db.query(CartItem).filter(CartItem.owner_id == owner_id).order_by(CartItem.id).all()


def get_cart(db: Session, owner_id: str) -> dict:
    lines = get_lines(db, owner_id)
    ids = list({line.artwork_id for line in lines})
    artworks = {a.id: a for a in db.query(Artwork).filter(Artwork.id.in_(ids)).all()} if ids else {}

    items = []
    subtotal = Decimal("0")
    total_quantity = 0
    for line in lines:
        artwork = artworks.get(line.artwork_id)
        price = Decimal(artwork.price) if artwork else Decimal("0")
        available = bool(artwork) and (line.item_type != ItemType.ORIGINAL or bool(artwork.in_stock))
        if artwork:
            subtotal += price * line.quantity
        total_quantity += line.quantity
        items.append({
            "id": line.id,
            "artworkId": line.artwork_id,
            "itemType": line.item_type.value,
            "printSize": line.print_size,
            "quantity": line.quantity,
            "available": available,
            "artwork": artwork.to_dict() if artwork else None,
            "lineTotal": float(price * line.quantity),
        })

    return {
        "items": items,
        "summary": {
            "itemCount": len(items),
            "totalQuantity": total_quantity,
            "subtotal": float(subtotal),
        },
    }


def merge_digest(lines: Iterable[tuple]) -> str:
    canonical = sorted([artwork_id, kind.value, size or "", qty] for artwork_id, kind, size, qty in lines)
    return hashlib.sha256(json.dumps(canonical, separators=(",", ":")).encode("utf-8")).hexdigest()


def merge_guest_cart(db: Session, target_owner_id: str, guest_items: list[dict], guest_owner_id: Optional[str] = None) -> dict:
    """
    Fold a guest cart into target_owner_id.

    guest_items is the client-held list; guest_owner_id names server-held guest
    lines, which are merged and then deleted. Lines pointing at missing
    artworks or carrying invalid values are skipped. Re-sending the same
    client list is a no-op until the target cart changes.
    """
    client_lines = []
    skipped = 0
    for raw in guest_items or []:
        try:
            kind, size, qty = normalize_line(raw.get("item_type"), raw.get("print_size"), raw.get("quantity", 1))
        except ValidationError:
            skipped += 1
            continue
        artwork_id = str(raw.get("artwork_id") or "").strip()
        if not artwork_id:
            skipped += 1
            continue
        client_lines.append((artwork_id, kind, size, qty))

    server_lines = []
    if guest_owner_id and guest_owner_id != target_owner_id:
        server_lines = [
            (line.artwork_id, line.item_type, line.print_size, line.quantity)
            for line in get_lines(db, guest_owner_id)
        ]

    digest = merge_digest(client_lines) if client_lines else None
    already_merged = bool(
        digest
        and db.query(GuestCartMerge.id)
        .filter(GuestCartMerge.owner_id == target_owner_id, GuestCartMerge.merge_digest == digest)
        .first()
    )
    to_merge = server_lines + ([] if already_merged else client_lines)

    ids = list({artwork_id for artwork_id, _, _, _ in to_merge})
    existing = {row.id for row in db.query(Artwork.id).filter(Artwork.id.in_(ids)).all()} if ids else set()

    merged = 0
    for artwork_id, kind, size, qty in to_merge:
        if artwork_id not in existing:
            skipped += 1
            continue
        _upsert_line(db, target_owner_id, artwork_id, kind, size, qty)
        merged += 1

    if digest and not already_merged:
        db.add(GuestCartMerge(owner_id=target_owner_id, merge_digest=digest, merged_lines=merged))
    if server_lines:
        clear(db, guest_owner_id, commit=False)

    try:
        db.commit()
    except IntegrityError:
        # A concurrent merge of the same list recorded the digest first
        db.rollback()
        logger.info(f"[cart] concurrent merge for {target_owner_id} detected; keeping the first")
        return {"merged": 0, "skipped": skipped, "alreadyMerged": True}

    logger.info(f"[cart] merged {merged} guest lines into {target_owner_id} (skipped={skipped}, repeat={already_merged})")
    return {"merged": merged, "skipped": skipped, "alreadyMerged": already_merged}
