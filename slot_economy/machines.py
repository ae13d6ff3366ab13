"""
machines.py - Machine and upgrade events

Pure compute_* builders for buying machines and buying, applying and
selling upgrades. Upgrade effects are additive deltas; a machine's base
attributes are never replaced.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal

from .catalog import MachineType, UpgradeSpec
from .core import COINS, Effect, PendingEvent, TransactionKind, credit, debit
from .records import Machine, OwnedUpgrade


def new_machine(machine_id: str, owner_id: str, machine_type: MachineType, created_at: datetime) -> Machine:
    return Machine(
        machine_id=machine_id,
        owner_id=owner_id,
        name=machine_type.name,
        machine_type=machine_type.type_id,
        base=machine_type.attributes,
        created_at=created_at,
    )


def compute_account_opening(
    account_id: str,
    starting_coins: int,
    starter: Machine,
    timestamp: datetime,
) -> PendingEvent:
    moves = (credit(Decimal(starting_coins), COINS, "starting coins"),) if starting_coins > 0 else ()
    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.ACCOUNT_OPENING,
        moves=moves,
        effects=(Effect("add_machine", {'machine': starter}),),
        amount=Decimal(starting_coins),
        currency=COINS,
        timestamp=timestamp,
        description=f"Account opened with {starting_coins} coins",
        machine_id=starter.machine_id,
    )


def compute_machine_purchase(
    account_id: str,
    machine_type: MachineType,
    machine: Machine,
    timestamp: datetime,
) -> PendingEvent:
    price = machine_type.price
    moves = (debit(Decimal(price), COINS, "machine"),) if price > 0 else ()
    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.PURCHASE_MACHINE,
        moves=moves,
        effects=(Effect("add_machine", {'machine': machine}),),
        amount=Decimal(price),
        currency=COINS,
        timestamp=timestamp,
        description=f"Purchased {machine_type.name} for {price} coins",
        machine_id=machine.machine_id,
    )


def compute_upgrade_purchase(
    account_id: str,
    spec: UpgradeSpec,
    upgrade_id: str,
    timestamp: datetime,
) -> PendingEvent:
    owned = OwnedUpgrade(
        upgrade_id=upgrade_id,
        catalog_id=spec.upgrade_id,
        purchase_price=spec.price,
        effects=dict(spec.effects),
        sell_value=spec.sell_value,
        purchased_at=timestamp,
    )
    moves = (debit(Decimal(spec.price), COINS, "upgrade"),) if spec.price > 0 else ()
    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.PURCHASE_UPGRADE,
        moves=moves,
        effects=(Effect("add_upgrade", {'upgrade': owned}),),
        amount=Decimal(spec.price),
        currency=COINS,
        timestamp=timestamp,
        description=f"Purchased {spec.name} upgrade for {spec.price} coins",
        upgrade_id=upgrade_id,
    )


def compute_upgrade_install(
    account_id: str,
    upgrade_id: str,
    machine_id: str,
    timestamp: datetime,
) -> PendingEvent:
    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.APPLY_UPGRADE,
        moves=(),
        effects=(Effect("install_upgrade", {'upgrade_id': upgrade_id, 'machine_id': machine_id}),),
        amount=Decimal("0"),
        currency=COINS,
        timestamp=timestamp,
        description=f"Applied upgrade {upgrade_id} to machine {machine_id}",
        machine_id=machine_id,
        upgrade_id=upgrade_id,
    )


def resale_value(owned: OwnedUpgrade) -> int:
    if owned.sell_value is not None:
        return owned.sell_value
    return owned.purchase_price // 2


def compute_upgrade_sale(
    account_id: str,
    owned: OwnedUpgrade,
    timestamp: datetime,
) -> PendingEvent:
    value = resale_value(owned)
    moves = (credit(Decimal(value), COINS, "upgrade sale"),) if value > 0 else ()
    return PendingEvent(
        account_id=account_id,
        kind=TransactionKind.SELL_UPGRADE,
        moves=moves,
        effects=(Effect("remove_upgrade", {'upgrade_id': owned.upgrade_id}),),
        amount=Decimal(value),
        currency=COINS,
        timestamp=timestamp,
        description=f"Sold upgrade {owned.catalog_id} for {value} coins",
        upgrade_id=owned.upgrade_id,
    )
