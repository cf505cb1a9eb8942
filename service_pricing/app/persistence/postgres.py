"""
PostgreSQL persistence layer for the pricing engine.

Implements the rule store, bundle catalog and coupon store over asyncpg.
"""

import json
from typing import Any, List, Optional

import asyncpg

from shared.errors import ExternalServiceError
from shared.logging import get_logger

from ..models import (
    Bundle,
    CorporateEmailDomainDiscount,
    CouponRecord,
    CouponUsage,
    CouponUsageRecord,
)
from ..stores import PricingBlock, StrategyBlock


def _json(value: Any, default: Any) -> Any:
    """JSONB columns arrive as text unless a codec is registered."""
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class PostgreSQLPricingStore:
    """asyncpg-backed rule store, bundle catalog and coupon store."""

    def __init__(self, dsn: str, command_timeout: float = 30.0):
        self.dsn = dsn
        self.command_timeout = command_timeout
        self.logger = get_logger("pricing.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=self.command_timeout
            )
            self.logger.info("PostgreSQL persistence started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise ExternalServiceError("postgres", str(e)) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    async def _fetch(self, query: str, *args) -> List[asyncpg.Record]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except Exception as e:
            self.logger.error("Query failed", error=str(e))
            raise ExternalServiceError("postgres", str(e)) from e

    async def _fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchrow(query, *args)
        except Exception as e:
            self.logger.error("Query failed", error=str(e))
            raise ExternalServiceError("postgres", str(e)) from e

    # Rule store

    async def list_active_blocks(self) -> List[PricingBlock]:
        """Active pricing blocks inside their validity window."""
        rows = await self._fetch("""
            SELECT * FROM pricing_blocks
            WHERE is_active = TRUE
              AND (valid_from IS NULL OR valid_from <= NOW())
              AND (valid_until IS NULL OR valid_until >= NOW())
            ORDER BY priority DESC
        """)
        return [self._row_to_block(row) for row in rows]

    async def list_strategy_blocks(self, strategy_id: str) -> List[StrategyBlock]:
        """Enabled blocks of one strategy with their strategy-level config."""
        rows = await self._fetch("""
            SELECT pb.*,
                   sb.priority AS strategy_priority,
                   sb.config_overrides,
                   sb.is_enabled
            FROM strategy_blocks sb
            JOIN pricing_blocks pb ON pb.id = sb.block_id
            WHERE sb.strategy_id = $1
              AND sb.is_enabled = TRUE
              AND pb.is_active = TRUE
            ORDER BY sb.priority DESC
        """, strategy_id)

        return [
            StrategyBlock(
                block=self._row_to_block(row),
                priority=row["strategy_priority"],
                config_overrides=_json(row["config_overrides"], {}),
                is_enabled=row["is_enabled"],
            )
            for row in rows
        ]

    async def get_default_strategy_id(self) -> Optional[str]:
        row = await self._fetchrow("""
            SELECT id FROM pricing_strategies WHERE is_default = TRUE LIMIT 1
        """)
        return str(row["id"]) if row else None

    def _row_to_block(self, row) -> PricingBlock:
        return PricingBlock(
            id=str(row["id"]),
            name=row["name"],
            event_type=row["event_type"],
            conditions=_json(row["conditions"], None),
            params=_json(row["params"], {}),
            priority=row["priority"],
            category=row["category"],
            is_active=row["is_active"],
            valid_from=row["valid_from"],
            valid_until=row["valid_until"],
        )

    # Bundle catalog

    async def find_bundles(
        self,
        group: str,
        region: Optional[str] = None,
        country: Optional[str] = None,
    ) -> List[Bundle]:
        """Catalog bundles of `group` covering the destination."""
        rows = await self._fetch("""
            SELECT * FROM catalog_bundles
            WHERE $1 = ANY(groups)
              AND ($2::text IS NULL OR region = $2)
              AND ($3::text IS NULL OR $3 = ANY(countries))
            ORDER BY validity_in_days ASC, price ASC
        """, group, region, country)

        return [
            Bundle(
                id=str(row["id"]),
                name=row["esim_go_name"],
                group_name=group,
                countries=list(row["countries"] or []),
                region=row["region"],
                validity_days=row["validity_in_days"],
                price=float(row["price"]) if row["price"] is not None else None,
                is_unlimited=bool(row["is_unlimited"]),
                currency=row["currency"] or "USD",
                data_amount_mb=row["data_amount_mb"],
            )
            for row in rows
        ]

    # Coupon store

    async def get_coupon_by_code(self, code: str) -> Optional[CouponRecord]:
        row = await self._fetchrow("""
            SELECT * FROM coupons
            WHERE code = $1 AND deleted_at IS NULL
        """, code)

        if not row:
            self.logger.debug("Coupon not found", code=code)
            return None

        return CouponRecord(
            id=str(row["id"]),
            code=row["code"],
            coupon_type=row["coupon_type"],
            value=float(row["value"]),
            is_active=row["is_active"],
            min_spend=float(row["min_spend"]) if row["min_spend"] is not None else None,
            max_discount=float(row["max_discount"]) if row["max_discount"] is not None else None,
            max_total_usage=row["max_total_usage"],
            max_per_user=row["max_per_user"],
            valid_from=row["valid_from"],
            valid_until=row["valid_until"],
            allowed_bundle_ids=list(row["allowed_bundle_ids"] or []),
            allowed_regions=list(row["allowed_regions"] or []),
            corporate_domain=row["corporate_domain"],
            description=row["description"],
        )

    async def get_coupon_usage(self, coupon_id: str, user_id: Optional[str] = None) -> CouponUsage:
        row = await self._fetchrow("""
            SELECT COUNT(*) AS total_usage,
                   COUNT(*) FILTER (WHERE $2::text IS NOT NULL AND user_id = $2) AS user_usage
            FROM coupon_usage_logs
            WHERE coupon_id = $1
        """, coupon_id, user_id)

        return CouponUsage(
            total_usage=row["total_usage"] if row else 0,
            user_usage=row["user_usage"] if row else 0,
        )

    async def get_corporate_domain(self, domain: str) -> Optional[CorporateEmailDomainDiscount]:
        row = await self._fetchrow("""
            SELECT * FROM corporate_email_domains
            WHERE LOWER(domain) = $1 AND is_active = TRUE
            ORDER BY discount_percentage DESC
            LIMIT 1
        """, domain.lower())

        if not row:
            return None

        return CorporateEmailDomainDiscount(
            domain=row["domain"],
            discount_percentage=float(row["discount_percentage"]),
            max_discount=float(row["max_discount"]) if row["max_discount"] is not None else None,
            min_spend=float(row["min_spend"]) if row["min_spend"] is not None else None,
            is_active=row["is_active"],
        )

    async def log_coupon_usage(self, record: CouponUsageRecord) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO coupon_usage_logs (
                        coupon_id, user_id, original_amount, discount_amount,
                        discounted_amount, order_id, used_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, NOW())
                """,
                    record.coupon_id, record.user_id, record.original_amount,
                    record.discount_amount, record.discounted_amount, record.order_id
                )
        except Exception as e:
            self.logger.error("Error logging coupon usage", coupon_id=record.coupon_id, error=str(e))
            raise ExternalServiceError("postgres", str(e)) from e

        self.logger.info("Coupon usage logged", coupon_id=record.coupon_id, user_id=record.user_id)

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False
