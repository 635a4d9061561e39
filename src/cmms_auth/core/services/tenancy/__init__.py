from .tenant_resolver import TenantResolver, split_mapping

__all__ = ["TenantResolver", "split_mapping"]
