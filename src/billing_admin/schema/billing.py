"""Tables and columns the billing application cannot run without.

Used by ``connect_and_validate()`` and the ``verify`` CLI command to check
a production store before it is put into service.
"""

REQUIRED_TABLES: tuple[str, ...] = (
    "invoices",
    "customers",
    "packages",
    "payments",
    "payment_gateway_transactions",
    "odps",
    "cable_routes",
    "technicians",
    "trouble_reports",
)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "invoices": {
        "id", "customer_id", "package_id", "invoice_number", "amount",
        "base_amount", "tax_rate", "due_date", "status", "payment_date",
        "payment_method", "payment_gateway", "payment_token", "payment_url",
        "payment_status", "notes", "created_at", "description", "invoice_type",
        "package_name",
    },
    "customers": {
        "id", "name", "username", "pppoe_username", "email", "address",
        "latitude", "longitude", "package_id", "odp_id", "pppoe_profile",
        "status", "auto_suspension", "billing_day",
    },
    "packages": {
        "id", "name", "price", "tax_rate", "description", "speed",
        "status", "created_at", "pppoe_profile",
    },
}


def expected_schema() -> dict[str, set[str]]:
    """Expected columns per required table (empty set = existence only)."""
    return {
        table: set(REQUIRED_COLUMNS.get(table, set()))
        for table in REQUIRED_TABLES
    }
