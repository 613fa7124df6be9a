"""
Inventory Consumption Engine

Tracks stock per product and location through an append-only movement log.
Every quantity change is a movement; stock levels and product totals are
updated in the same atomic unit. Costing is weighted average: every inflow
re-averages the product's unit cost.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, date, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Any
from enum import Enum
import logging
import uuid

from .currency import Money, quantize_amount
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .ledger import GeneralLedger, JournalLine, JournalSource
from .company import CompanySettingsService
from .config import LedgerlineConfig, get_config
from .errors import (
    InsufficientStockError, InvalidAmountError, InvalidTransitionError, NotFoundError
)
from .logging_config import log_action

logger = logging.getLogger("ledgerline.inventory")

UNIT_COST_PLACES = Decimal('0.0001')


class MovementType(Enum):
    RECEIVE = "receive"
    CONSUME = "consume"
    RETURN = "return"
    ADJUST = "adjust"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"


class AdjustmentType(Enum):
    ADD = "add"
    RECEIVE = "receive"
    RETURN = "return"
    REMOVE = "remove"
    SELL = "sell"
    DAMAGE = "damage"
    SHRINKAGE = "shrinkage"
    ADJUSTMENT = "adjustment"  # quantity is an absolute target


INFLOW_ADJUSTMENTS = {AdjustmentType.ADD, AdjustmentType.RECEIVE, AdjustmentType.RETURN}
OUTFLOW_ADJUSTMENTS = {AdjustmentType.REMOVE, AdjustmentType.SELL,
                       AdjustmentType.DAMAGE, AdjustmentType.SHRINKAGE}


def _dec(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class Product(StorageRecord):
    """Stock item; quantity_on_hand is the sum over all locations"""
    sku: str
    name: str
    track_inventory: bool = True
    cost_price: Decimal = Decimal('0')  # weighted average unit cost
    quantity_on_hand: Decimal = Decimal('0')
    sale_price: Optional[Decimal] = None
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Product':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            sku=data['sku'],
            name=data['name'],
            track_inventory=data.get('track_inventory', True),
            cost_price=Decimal(data.get('cost_price', '0')),
            quantity_on_hand=Decimal(data.get('quantity_on_hand', '0')),
            sale_price=Decimal(data['sale_price']) if data.get('sale_price') is not None else None,
            is_active=data.get('is_active', True)
        )


@dataclass
class StockLevel(StorageRecord):
    product_id: str
    location_id: str
    quantity: Decimal = Decimal('0')

    @staticmethod
    def make_key(product_id: str, location_id: str) -> str:
        return f"{product_id}:{location_id}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StockLevel':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            product_id=data['product_id'],
            location_id=data['location_id'],
            quantity=Decimal(data['quantity'])
        )


@dataclass
class InventoryMovement(StorageRecord):
    """Append-only stock movement; quantity is signed"""
    product_id: str
    location_id: str
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    movement_type: MovementType
    movement_date: date
    reason: str = ""
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    reverses: Optional[str] = None
    actor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['movement_type'] = self.movement_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InventoryMovement':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            product_id=data['product_id'],
            location_id=data['location_id'],
            quantity=Decimal(data['quantity']),
            unit_cost=Decimal(data['unit_cost']),
            total_cost=Decimal(data['total_cost']),
            movement_type=MovementType(data['movement_type']),
            movement_date=date.fromisoformat(data['movement_date']),
            reason=data.get('reason', ""),
            reference_type=data.get('reference_type'),
            reference_id=data.get('reference_id'),
            reverses=data.get('reverses'),
            actor=data.get('actor')
        )


@dataclass
class StockLine:
    """One requested stock change (a document line reduced to what inventory needs)"""
    product_id: str
    quantity: Decimal
    location_id: Optional[str] = None
    unit_cost: Optional[Decimal] = None
    description: str = ""


@dataclass
class ConsumptionRecord:
    product_id: str
    location_id: str
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    movement_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": str(self.quantity),
            "unit_cost": str(self.unit_cost),
            "total_cost": str(self.total_cost),
            "movement_id": self.movement_id,
        }


@dataclass
class ConsumptionSummary:
    consumptions: List[ConsumptionRecord] = field(default_factory=list)
    total_cost: Decimal = Decimal('0')
    journal_entry_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consumptions": [c.to_dict() for c in self.consumptions],
            "total_cost": str(self.total_cost),
            "journal_entry_id": self.journal_entry_id,
        }


@dataclass
class ReversalOutcome:
    success: bool
    journal_entry_id: Optional[str] = None
    movement_ids: List[str] = field(default_factory=list)
    total_cost: Decimal = Decimal('0')
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "journal_entry_id": self.journal_entry_id,
            "movement_ids": list(self.movement_ids),
            "total_cost": str(self.total_cost),
            "message": self.message,
        }


class InventoryEngine:
    """
    Stock bookkeeping and its general ledger effects

    Sales consumption posts COGS against inventory, returns post the mirror,
    adjustments post against the inventory adjustment account. Purchase
    receipts move stock only; the bill posting carries their ledger effect.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        ledger: GeneralLedger,
        settings: CompanySettingsService,
        config: Optional[LedgerlineConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ledger = ledger
        self.settings = settings
        self.config = config or get_config()
        self.products_table = "products"
        self.stock_table = "stock_levels"
        self.movements_table = "inventory_movements"

    # Products and stock

    def register_product(
        self,
        sku: str,
        name: str,
        track_inventory: bool = True,
        cost_price: Decimal = Decimal('0'),
        initial_quantity: Decimal = Decimal('0'),
        location_id: Optional[str] = None,
        sale_price: Optional[Decimal] = None,
        actor: Optional[str] = None
    ) -> Product:
        """
        Register a product, optionally with opening stock

        Opening stock is recorded as a receive movement without a journal
        entry.
        """
        cost_price = _dec(cost_price)
        initial_quantity = _dec(initial_quantity)
        if cost_price < 0:
            raise InvalidAmountError("Cost price cannot be negative", {"sku": sku})
        if initial_quantity < 0:
            raise InvalidAmountError("Initial quantity cannot be negative", {"sku": sku})
        if self.get_product_by_sku(sku):
            raise ValueError(f"Product with SKU {sku} already exists")

        now = datetime.now(timezone.utc)
        product = Product(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            sku=sku,
            name=name,
            track_inventory=track_inventory,
            cost_price=cost_price,
            sale_price=_dec(sale_price) if sale_price is not None else None
        )

        with self.storage.atomic():
            self._save_product(product)
            if track_inventory and initial_quantity > 0:
                location = location_id or self._default_location()
                self._record_movement(
                    product, location, initial_quantity, cost_price, MovementType.RECEIVE,
                    reason="opening_balance", actor=actor
                )
                self._save_product(product)

            self.audit_trail.log_event(
                event_type=AuditEventType.PRODUCT_REGISTERED,
                entity_type="product",
                entity_id=product.id,
                metadata={
                    "sku": sku,
                    "track_inventory": track_inventory,
                    "cost_price": cost_price,
                    "initial_quantity": initial_quantity
                },
                user_id=actor
            )

        log_action(logger, "info", f"Registered product {sku}", user_id=actor,
                   action="register_product", resource=product.id)
        return product

    def get_product(self, product_id: str) -> Optional[Product]:
        data = self.storage.load(self.products_table, product_id)
        return Product.from_dict(data) if data else None

    def require_product(self, product_id: str) -> Product:
        product = self.get_product(product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
        return product

    def get_product_by_sku(self, sku: str) -> Optional[Product]:
        matches = self.storage.find(self.products_table, {'sku': sku})
        return Product.from_dict(matches[0]) if matches else None

    def list_products(self, active_only: bool = False) -> List[Product]:
        products = [Product.from_dict(d) for d in self.storage.load_all(self.products_table)]
        if active_only:
            products = [p for p in products if p.is_active]
        products.sort(key=lambda p: p.sku)
        return products

    def get_stock(self, product_id: str, location_id: Optional[str] = None) -> Decimal:
        """Quantity at one location, or across all locations when none is given"""
        if location_id is None:
            return self.require_product(product_id).quantity_on_hand
        data = self.storage.load(self.stock_table, StockLevel.make_key(product_id, location_id))
        return Decimal(data['quantity']) if data else Decimal('0')

    def list_stock_levels(self, product_id: str) -> List[StockLevel]:
        levels = [StockLevel.from_dict(d)
                  for d in self.storage.find(self.stock_table, {'product_id': product_id})]
        levels.sort(key=lambda s: s.location_id)
        return levels

    def get_movements(self, product_id: Optional[str] = None,
                      reference_id: Optional[str] = None) -> List[InventoryMovement]:
        filters = {}
        if product_id:
            filters['product_id'] = product_id
        if reference_id:
            filters['reference_id'] = reference_id
        movements = [InventoryMovement.from_dict(d)
                     for d in self.storage.find(self.movements_table, filters)]
        movements.sort(key=lambda m: m.created_at)
        return movements

    # Sales consumption

    def consume(
        self,
        lines: List[StockLine],
        party: Optional[str] = None,
        actor: Optional[str] = None,
        document_id: Optional[str] = None,
        reference_type: str = "invoice",
        entry_date: Optional[date] = None
    ) -> ConsumptionSummary:
        """
        Remove sold stock and post its cost

        All lines are checked against stock before the first write; a single
        shortfall fails the whole call with nothing written.

        Raises:
            InsufficientStockError: Requested quantity exceeds stock at a
                location (aggregated per product and location)
            InvalidAmountError: A line quantity is not positive
            NotFoundError: A line names an unknown product
        """
        entry_date = entry_date or date.today()
        summary = ConsumptionSummary()

        for line in lines:
            if _dec(line.quantity) <= 0:
                raise InvalidAmountError("Consumed quantity must be positive",
                                         {"product_id": line.product_id,
                                          "quantity": str(line.quantity)})

        with self.storage.atomic():
            tracked = self._tracked_lines(lines)
            if not tracked:
                return summary

            requested: Dict[Tuple[str, str], Decimal] = {}
            for product, line, location in tracked:
                key = (product.id, location)
                requested[key] = requested.get(key, Decimal('0')) + _dec(line.quantity)
            for (product_id, location), quantity in requested.items():
                available = self.get_stock(product_id, location)
                if quantity > available:
                    product = self.require_product(product_id)
                    raise InsufficientStockError(
                        f"Insufficient stock for {product.sku} at {location}: "
                        f"requested {quantity}, available {available}",
                        {"product_id": product_id, "sku": product.sku, "location_id": location,
                         "requested": str(quantity), "available": str(available)}
                    )

            for _, line, location in tracked:
                product = self.require_product(line.product_id)
                quantity = _dec(line.quantity)
                movement = self._record_movement(
                    product, location, -quantity, product.cost_price, MovementType.CONSUME,
                    reason=line.description or "sale", reference_type=reference_type,
                    reference_id=document_id, actor=actor, movement_date=entry_date
                )
                self._save_product(product)
                summary.consumptions.append(ConsumptionRecord(
                    product_id=product.id,
                    location_id=location,
                    quantity=quantity,
                    unit_cost=movement.unit_cost,
                    total_cost=-movement.total_cost,
                    movement_id=movement.id
                ))
                summary.total_cost += -movement.total_cost

            if summary.total_cost > 0:
                entry = self._post(
                    entry_date,
                    f"Cost of goods sold{' for ' + party if party else ''}",
                    debit_code=self.config.cogs_account_code,
                    credit_code=self.config.inventory_account_code,
                    amount=summary.total_cost,
                    source=JournalSource.INVENTORY,
                    document_id=document_id,
                    actor=actor
                )
                summary.journal_entry_id = entry.id

            self.audit_trail.log_event(
                event_type=AuditEventType.INVENTORY_CONSUMED,
                entity_type="inventory",
                entity_id=document_id or "manual",
                metadata={
                    "lines": len(summary.consumptions),
                    "total_cost": summary.total_cost,
                    "journal_entry_id": summary.journal_entry_id
                },
                user_id=actor
            )

        log_action(logger, "info", f"Consumed {len(summary.consumptions)} stock lines",
                   user_id=actor, action="consume", resource=document_id,
                   extra={"total_cost": str(summary.total_cost)})
        return summary

    def reverse(self, document_id: str, actor: Optional[str] = None,
                entry_date: Optional[date] = None) -> ReversalOutcome:
        """
        Return every not-yet-returned consumption of a document to stock

        Originals stay in the log; each return movement points at the
        consumption it undoes, so a second call finds nothing outstanding.
        """
        entry_date = entry_date or date.today()

        with self.storage.atomic():
            outstanding = self._unreversed(document_id, MovementType.CONSUME)
            if not outstanding:
                return ReversalOutcome(success=False,
                                       message=f"No outstanding consumption for {document_id}")

            outcome = ReversalOutcome(success=True)
            for original in outstanding:
                product = self.require_product(original.product_id)
                movement = self._record_movement(
                    product, original.location_id, -original.quantity, original.unit_cost,
                    MovementType.RETURN, reason="reversal", reference_type=original.reference_type,
                    reference_id=document_id, reverses=original.id, actor=actor,
                    movement_date=entry_date
                )
                self._save_product(product)
                outcome.movement_ids.append(movement.id)
                outcome.total_cost += movement.total_cost

            if outcome.total_cost > 0:
                entry = self._post(
                    entry_date,
                    "Reversal of cost of goods sold",
                    debit_code=self.config.inventory_account_code,
                    credit_code=self.config.cogs_account_code,
                    amount=outcome.total_cost,
                    source=JournalSource.INVENTORY_REVERSAL,
                    document_id=document_id,
                    actor=actor
                )
                outcome.journal_entry_id = entry.id

            self.audit_trail.log_event(
                event_type=AuditEventType.INVENTORY_REVERSED,
                entity_type="inventory",
                entity_id=document_id,
                metadata={
                    "movements": len(outcome.movement_ids),
                    "total_cost": outcome.total_cost,
                    "journal_entry_id": outcome.journal_entry_id
                },
                user_id=actor
            )

        log_action(logger, "info", f"Returned {len(outcome.movement_ids)} stock lines",
                   user_id=actor, action="reverse_consumption", resource=document_id)
        return outcome

    # Purchase receipts

    def receive(self, lines: List[StockLine], document_id: Optional[str] = None,
                actor: Optional[str] = None, reference_type: str = "bill",
                entry_date: Optional[date] = None) -> ConsumptionSummary:
        """
        Add purchased stock at the line unit cost, re-averaging product cost

        No journal entry: the purchase document already debits inventory.
        """
        entry_date = entry_date or date.today()
        summary = ConsumptionSummary()

        with self.storage.atomic():
            for product, line, location in self._tracked_lines(lines):
                quantity = _dec(line.quantity)
                if quantity <= 0:
                    raise InvalidAmountError("Received quantity must be positive",
                                             {"product_id": product.id})
                unit_cost = _dec(line.unit_cost) if line.unit_cost is not None else product.cost_price
                movement = self._record_movement(
                    product, location, quantity, unit_cost, MovementType.RECEIVE,
                    reason=line.description or "purchase", reference_type=reference_type,
                    reference_id=document_id, actor=actor, movement_date=entry_date
                )
                self._save_product(product)
                summary.consumptions.append(ConsumptionRecord(
                    product.id, location, quantity, movement.unit_cost,
                    movement.total_cost, movement.id
                ))
                summary.total_cost += movement.total_cost

            if summary.consumptions:
                self.audit_trail.log_event(
                    event_type=AuditEventType.INVENTORY_RECEIVED,
                    entity_type="inventory",
                    entity_id=document_id or "manual",
                    metadata={"lines": len(summary.consumptions), "total_cost": summary.total_cost},
                    user_id=actor
                )

        log_action(logger, "info", f"Received {len(summary.consumptions)} stock lines",
                   user_id=actor, action="receive", resource=document_id)
        return summary

    def reverse_receipt(self, document_id: str, actor: Optional[str] = None,
                        entry_date: Optional[date] = None) -> ReversalOutcome:
        """
        Take back stock received for a voided purchase document

        Raises:
            InsufficientStockError: Part of the received stock is gone
        """
        entry_date = entry_date or date.today()

        with self.storage.atomic():
            outstanding = self._unreversed(document_id, MovementType.RECEIVE)
            if not outstanding:
                return ReversalOutcome(success=False,
                                       message=f"No outstanding receipt for {document_id}")

            outcome = ReversalOutcome(success=True)
            for original in outstanding:
                available = self.get_stock(original.product_id, original.location_id)
                if original.quantity > available:
                    raise InsufficientStockError(
                        f"Cannot reverse receipt: requested {original.quantity}, "
                        f"available {available}",
                        {"product_id": original.product_id, "location_id": original.location_id,
                         "requested": str(original.quantity), "available": str(available)}
                    )
                product = self.require_product(original.product_id)
                movement = self._record_movement(
                    product, original.location_id, -original.quantity, original.unit_cost,
                    MovementType.ADJUST, reason="receipt_reversal",
                    reference_type=original.reference_type, reference_id=document_id,
                    reverses=original.id, actor=actor, movement_date=entry_date
                )
                self._save_product(product)
                outcome.movement_ids.append(movement.id)
                outcome.total_cost += -movement.total_cost

            self.audit_trail.log_event(
                event_type=AuditEventType.INVENTORY_REVERSED,
                entity_type="inventory",
                entity_id=document_id,
                metadata={"movements": len(outcome.movement_ids), "receipt": True},
                user_id=actor
            )
        return outcome

    # Manual changes

    def adjust(
        self,
        product_id: str,
        adjustment_type: AdjustmentType,
        quantity: Decimal,
        unit_cost: Optional[Decimal] = None,
        update_cost: bool = False,
        location_id: Optional[str] = None,
        notes: str = "",
        actor: Optional[str] = None,
        entry_date: Optional[date] = None
    ) -> InventoryMovement:
        """
        Apply one manual stock adjustment

        add/receive/return add stock, remove/sell/damage/shrinkage take it
        away, adjustment sets the location's quantity to an absolute target.
        A non-zero valued change posts against the adjustment account.

        Raises:
            InvalidAmountError: Non-positive quantity (negative target for
                adjustment)
            InsufficientStockError: Removal exceeds stock at the location
            InvalidTransitionError: Product does not track inventory
        """
        quantity = _dec(quantity)
        entry_date = entry_date or date.today()
        location = location_id or self._default_location()

        if adjustment_type == AdjustmentType.ADJUSTMENT:
            if quantity < 0:
                raise InvalidAmountError("Target quantity cannot be negative",
                                         {"product_id": product_id})
        elif quantity <= 0:
            raise InvalidAmountError("Adjustment quantity must be positive",
                                     {"product_id": product_id})

        with self.storage.atomic():
            product = self.require_product(product_id)
            if not product.track_inventory:
                raise InvalidTransitionError(f"Product {product.sku} does not track inventory",
                                             {"product_id": product_id})

            current = self.get_stock(product_id, location)
            if adjustment_type in INFLOW_ADJUSTMENTS:
                delta = quantity
            elif adjustment_type in OUTFLOW_ADJUSTMENTS:
                if quantity > current:
                    raise InsufficientStockError(
                        f"Insufficient stock for {product.sku} at {location}: "
                        f"requested {quantity}, available {current}",
                        {"product_id": product_id, "location_id": location,
                         "requested": str(quantity), "available": str(current)}
                    )
                delta = -quantity
            else:
                delta = quantity - current

            if update_cost and unit_cost is not None:
                product.cost_price = _dec(unit_cost).quantize(UNIT_COST_PLACES, rounding=ROUND_HALF_UP)
            movement_cost = _dec(unit_cost) if (unit_cost is not None and delta > 0) else product.cost_price

            if adjustment_type == AdjustmentType.RECEIVE:
                movement_type = MovementType.RECEIVE
            elif adjustment_type == AdjustmentType.RETURN:
                movement_type = MovementType.RETURN
            else:
                movement_type = MovementType.ADJUST

            reason = adjustment_type.value if not notes else f"{adjustment_type.value}: {notes}"
            movement = self._record_movement(
                product, location, delta, movement_cost, movement_type,
                reason=reason, reference_type="adjustment", actor=actor,
                movement_date=entry_date
            )
            self._save_product(product)

            journal_entry_id = None
            if movement.total_cost != 0:
                inventory_code = self.config.inventory_account_code
                adjustment_code = self.config.inventory_adjustment_account_code
                increase = movement.total_cost > 0
                entry = self._post(
                    entry_date,
                    f"Inventory {adjustment_type.value} for {product.sku}",
                    debit_code=inventory_code if increase else adjustment_code,
                    credit_code=adjustment_code if increase else inventory_code,
                    amount=abs(movement.total_cost),
                    source=JournalSource.INVENTORY,
                    document_id=movement.id,
                    actor=actor
                )
                journal_entry_id = entry.id

            self.audit_trail.log_event(
                event_type=AuditEventType.INVENTORY_ADJUSTED,
                entity_type="product",
                entity_id=product_id,
                metadata={
                    "adjustment_type": adjustment_type.value,
                    "location_id": location,
                    "delta": delta,
                    "value": movement.total_cost,
                    "journal_entry_id": journal_entry_id
                },
                user_id=actor
            )

        log_action(logger, "info", f"Adjusted {product.sku} by {delta} at {location}",
                   user_id=actor, action="adjust_inventory", resource=product_id,
                   extra={"adjustment_type": adjustment_type.value})
        return movement

    def transfer(
        self,
        product_id: str,
        from_location: str,
        to_location: str,
        quantity: Decimal,
        actor: Optional[str] = None,
        notes: str = ""
    ) -> Tuple[InventoryMovement, InventoryMovement]:
        """Move stock between locations; no ledger effect"""
        quantity = _dec(quantity)
        if quantity <= 0:
            raise InvalidAmountError("Transfer quantity must be positive",
                                     {"product_id": product_id})
        if from_location == to_location:
            raise InvalidTransitionError("Transfer needs two different locations",
                                         {"location_id": from_location})

        with self.storage.atomic():
            product = self.require_product(product_id)
            available = self.get_stock(product_id, from_location)
            if quantity > available:
                raise InsufficientStockError(
                    f"Insufficient stock for {product.sku} at {from_location}: "
                    f"requested {quantity}, available {available}",
                    {"product_id": product_id, "location_id": from_location,
                     "requested": str(quantity), "available": str(available)}
                )
            out_movement = self._record_movement(
                product, from_location, -quantity, product.cost_price, MovementType.TRANSFER_OUT,
                reason=notes or f"to {to_location}", reference_type="transfer", actor=actor
            )
            in_movement = self._record_movement(
                product, to_location, quantity, product.cost_price, MovementType.TRANSFER_IN,
                reason=notes or f"from {from_location}", reference_type="transfer",
                reference_id=out_movement.id, actor=actor
            )
            self._save_product(product)

            self.audit_trail.log_event(
                event_type=AuditEventType.INVENTORY_TRANSFERRED,
                entity_type="product",
                entity_id=product_id,
                metadata={"from": from_location, "to": to_location, "quantity": quantity},
                user_id=actor
            )

        log_action(logger, "info", f"Transferred {quantity} {product.sku} {from_location} -> {to_location}",
                   user_id=actor, action="transfer_inventory", resource=product_id)
        return out_movement, in_movement

    # Internals

    def _default_location(self) -> str:
        return self.settings.get().default_location_id

    def _tracked_lines(self, lines: List[StockLine]) -> List[Tuple[Product, StockLine, str]]:
        result = []
        default_location = self._default_location()
        for line in lines:
            product = self.require_product(line.product_id)
            if not product.track_inventory:
                continue
            result.append((product, line, line.location_id or default_location))
        return result

    def _unreversed(self, document_id: str, movement_type: MovementType) -> List[InventoryMovement]:
        movements = self.get_movements(reference_id=document_id)
        reversed_ids = {m.reverses for m in movements if m.reverses}
        return [m for m in movements
                if m.movement_type == movement_type and m.id not in reversed_ids]

    def _record_movement(
        self,
        product: Product,
        location_id: str,
        quantity: Decimal,
        unit_cost: Decimal,
        movement_type: MovementType,
        reason: str = "",
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        reverses: Optional[str] = None,
        actor: Optional[str] = None,
        movement_date: Optional[date] = None
    ) -> InventoryMovement:
        """Write one movement and apply it to stock level, product quantity and cost"""
        base_currency = self.ledger.base_currency
        unit_cost = _dec(unit_cost)
        total_cost = quantize_amount(quantity * unit_cost, base_currency)
        now = datetime.now(timezone.utc)

        if movement_type not in (MovementType.TRANSFER_IN, MovementType.TRANSFER_OUT):
            on_hand = product.quantity_on_hand
            remaining = on_hand + quantity
            if quantity > 0:
                if remaining > 0:
                    product.cost_price = ((on_hand * product.cost_price + quantity * unit_cost)
                                          / remaining).quantize(UNIT_COST_PLACES, rounding=ROUND_HALF_UP)
            elif reverses and remaining > 0 and unit_cost != product.cost_price:
                # Taking back a receipt at its own cost keeps the remaining valuation intact
                value = on_hand * product.cost_price + quantity * unit_cost
                product.cost_price = max(value / remaining, Decimal('0')).quantize(
                    UNIT_COST_PLACES, rounding=ROUND_HALF_UP)
            product.quantity_on_hand = remaining

        level_key = StockLevel.make_key(product.id, location_id)
        level_data = self.storage.load(self.stock_table, level_key)
        level = StockLevel.from_dict(level_data) if level_data else StockLevel(
            id=level_key, created_at=now, updated_at=now,
            product_id=product.id, location_id=location_id
        )
        level.quantity += quantity
        level.updated_at = now
        self.storage.save(self.stock_table, level_key, level.to_dict())

        movement = InventoryMovement(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            product_id=product.id,
            location_id=location_id,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=total_cost,
            movement_type=movement_type,
            movement_date=movement_date or date.today(),
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            reverses=reverses,
            actor=actor
        )
        self.storage.save(self.movements_table, movement.id, movement.to_dict())
        product.updated_at = now
        return movement

    def _post(self, entry_date: date, description: str, debit_code: str, credit_code: str,
              amount: Decimal, source: JournalSource, document_id: Optional[str],
              actor: Optional[str]):
        money = Money(amount, self.ledger.base_currency)
        return self.ledger.create_entry(
            entry_date=entry_date,
            description=description,
            lines=[
                JournalLine.debit_line(debit_code, money, description),
                JournalLine.credit_line(credit_code, money, description),
            ],
            post_immediately=True,
            source=source,
            source_document_id=document_id,
            actor=actor
        )

    def _save_product(self, product: Product) -> None:
        self.storage.save(self.products_table, product.id, product.to_dict())
