"""
Схема базы данных и миграции.
"""

from typing import Dict, List

from .database import DatabaseService


TABLES: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'USER' CHECK(role IN ('ADMIN', 'USER')),
        account_status TEXT NOT NULL DEFAULT 'PENDING'
            CHECK(account_status IN ('PENDING', 'APPROVED', 'REJECTED')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS permissions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        module TEXT NOT NULL,
        level TEXT NOT NULL CHECK(level IN ('NONE', 'READ', 'WRITE')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(user_id, module),
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT,
        cover_image TEXT,
        sort_order INTEGER DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT,
        content TEXT,
        price DECIMAL(10, 2) NOT NULL,
        cover_image TEXT,
        show_image TEXT,
        category_id INTEGER,
        category TEXT,
        tags TEXT DEFAULT '[]',
        status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'inactive', 'archived')),
        network_disk_link TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cart_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        product_id INTEGER NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(user_id, product_id),
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS membership_plans (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT,
        price DECIMAL(10, 2) NOT NULL,
        duration INTEGER NOT NULL,
        discount REAL NOT NULL,
        daily_limit INTEGER NOT NULL,
        sort_order INTEGER DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'inactive')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memberships (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        membership_code TEXT NOT NULL UNIQUE,
        plan_id INTEGER NOT NULL,
        user_id INTEGER,
        order_number TEXT,
        plan_snapshot TEXT NOT NULL DEFAULT '{}',
        purchase_price DECIMAL(10, 2) NOT NULL,
        discount REAL NOT NULL,
        daily_limit INTEGER NOT NULL,
        duration INTEGER NOT NULL,
        start_date TIMESTAMP NOT NULL,
        end_date TIMESTAMP,
        status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'expired', 'cancelled')),
        payment_status TEXT NOT NULL DEFAULT 'pending'
            CHECK(payment_status IN ('pending', 'completed', 'failed')),
        payment_method TEXT,
        paid_at TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (plan_id) REFERENCES membership_plans(id),
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS membership_usage (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        membership_id INTEGER NOT NULL,
        usage_date TEXT NOT NULL,
        used_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(membership_id, usage_date),
        FOREIGN KEY (membership_id) REFERENCES memberships(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_number TEXT NOT NULL UNIQUE,
        user_id INTEGER,
        total_amount DECIMAL(10, 2) NOT NULL,
        original_amount DECIMAL(10, 2),
        discount DECIMAL(10, 2) DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK(status IN ('pending', 'paid', 'cancelled', 'refunded')),
        payment_method TEXT,
        membership_id INTEGER,
        expires_at TIMESTAMP,
        paid_at TIMESTAMP,
        cancelled_at TIMESTAMP,
        refunded_at TIMESTAMP,
        refund_reason TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE SET NULL,
        FOREIGN KEY (membership_id) REFERENCES memberships(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER NOT NULL,
        product_id INTEGER,
        product_title TEXT,
        quantity INTEGER NOT NULL,
        price DECIMAL(10, 2) NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE,
        FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER NOT NULL UNIQUE,
        amount DECIMAL(10, 2) NOT NULL,
        currency TEXT NOT NULL DEFAULT 'CNY',
        payment_method TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK(status IN ('pending', 'success', 'failed', 'refunded')),
        transaction_id TEXT,
        payment_data TEXT,
        paid_at TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS distributors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL UNIQUE,
        code TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK(status IN ('pending', 'active', 'rejected', 'suspended')),
        commission_rate REAL NOT NULL DEFAULT 0.1,
        contact_name TEXT,
        contact_phone TEXT,
        contact_email TEXT,
        bank_name TEXT,
        bank_account TEXT,
        bank_account_name TEXT,
        total_earnings DECIMAL(10, 2) DEFAULT 0,
        available_balance DECIMAL(10, 2) DEFAULT 0,
        pending_commission DECIMAL(10, 2) DEFAULT 0,
        withdrawn_amount DECIMAL(10, 2) DEFAULT 0,
        total_orders INTEGER DEFAULT 0,
        total_clicks INTEGER DEFAULT 0,
        is_verified INTEGER DEFAULT 0,
        verified_at TIMESTAMP,
        risk_level TEXT DEFAULT 'low',
        is_frozen INTEGER DEFAULT 0,
        frozen_reason TEXT,
        last_bank_info_update TIMESTAMP,
        first_withdrawal_at TIMESTAMP,
        reject_reason TEXT,
        approved_at TIMESTAMP,
        approved_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS distribution_orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER NOT NULL UNIQUE,
        distributor_id INTEGER NOT NULL,
        order_amount DECIMAL(10, 2) NOT NULL,
        commission_rate REAL NOT NULL,
        commission_amount DECIMAL(10, 2) NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK(status IN ('pending', 'confirmed', 'settled', 'cancelled', 'refunded')),
        confirmed_at TIMESTAMP,
        settled_at TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE,
        FOREIGN KEY (distributor_id) REFERENCES distributors(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS distribution_clicks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        distributor_id INTEGER NOT NULL,
        product_id INTEGER,
        visitor_id TEXT,
        ip_address TEXT,
        user_agent TEXT,
        referer TEXT,
        converted INTEGER DEFAULT 0,
        order_id INTEGER,
        clicked_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (distributor_id) REFERENCES distributors(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS commission_withdrawals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        distributor_id INTEGER NOT NULL,
        amount DECIMAL(10, 2) NOT NULL,
        fee DECIMAL(10, 2) NOT NULL DEFAULT 0,
        actual_amount DECIMAL(10, 2) NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK(status IN ('pending', 'processing', 'completed', 'rejected')),
        bank_name TEXT,
        bank_account TEXT,
        bank_account_name TEXT,
        risk_score INTEGER DEFAULT 0,
        risk_level TEXT DEFAULT 'low',
        risk_reasons TEXT DEFAULT '[]',
        reject_reason TEXT,
        transaction_id TEXT,
        processed_by INTEGER,
        processed_at TIMESTAMP,
        completed_at TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (distributor_id) REFERENCES distributors(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS security_alerts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        type TEXT NOT NULL,
        severity TEXT NOT NULL DEFAULT 'medium'
            CHECK(severity IN ('info', 'low', 'medium', 'high', 'critical')),
        user_id INTEGER,
        ip_address TEXT,
        user_agent TEXT,
        description TEXT NOT NULL,
        metadata TEXT DEFAULT '{}',
        status TEXT NOT NULL DEFAULT 'unresolved'
            CHECK(status IN ('unresolved', 'investigating', 'resolved', 'false_positive')),
        resolved_by INTEGER,
        resolved_at TIMESTAMP,
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS system_configs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        key TEXT NOT NULL UNIQUE,
        value TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'string' CHECK(type IN ('boolean', 'string', 'number', 'json')),
        category TEXT NOT NULL DEFAULT 'general',
        description TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS system_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        level TEXT NOT NULL,
        category TEXT NOT NULL,
        action TEXT NOT NULL,
        message TEXT NOT NULL,
        user_id INTEGER,
        ip_address TEXT,
        user_agent TEXT,
        path TEXT,
        method TEXT,
        status_code INTEGER,
        duration INTEGER,
        metadata TEXT,
        error TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        visitor_id TEXT NOT NULL,
        user_id INTEGER,
        visitor_name TEXT,
        visitor_email TEXT,
        status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'closed')),
        last_message_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id INTEGER NOT NULL,
        sender_type TEXT NOT NULL CHECK(sender_type IN ('visitor', 'admin')),
        sender_id TEXT,
        sender_name TEXT,
        message TEXT NOT NULL,
        image_url TEXT,
        is_read INTEGER DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (session_id) REFERENCES chat_sessions(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS banners (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        image TEXT NOT NULL,
        link TEXT,
        description TEXT,
        sort_order INTEGER DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'inactive')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS page_views (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        visitor_id TEXT NOT NULL,
        user_id INTEGER,
        ip_address TEXT,
        user_agent TEXT,
        path TEXT NOT NULL,
        referer TEXT,
        country TEXT,
        city TEXT,
        timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_export_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        visitor_id TEXT NOT NULL,
        export_date TEXT NOT NULL,
        export_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(visitor_id, export_date)
    )
    """,
]

INDEXES: List[str] = [
    "CREATE INDEX IF NOT EXISTS idx_products_status ON products(status)",
    "CREATE INDEX IF NOT EXISTS idx_products_category ON products(category_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_status_expires ON orders(status, expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items(order_id)",
    "CREATE INDEX IF NOT EXISTS idx_distribution_orders_status ON distribution_orders(status, confirmed_at)",
    "CREATE INDEX IF NOT EXISTS idx_distribution_clicks_distributor ON distribution_clicks(distributor_id, clicked_at)",
    "CREATE INDEX IF NOT EXISTS idx_withdrawals_distributor ON commission_withdrawals(distributor_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_security_alerts_status ON security_alerts(status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_system_logs_created ON system_logs(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_chat_messages_session ON chat_messages(session_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_page_views_timestamp ON page_views(timestamp)",
]

# Колонки, добавленные после первого релиза: таблица -> {колонка: определение}
COLUMN_MIGRATIONS: Dict[str, Dict[str, str]] = {
    "orders": {
        "original_amount": "DECIMAL(10, 2)",
        "discount": "DECIMAL(10, 2) DEFAULT 0",
        "membership_id": "INTEGER",
        "refund_reason": "TEXT",
    },
    "distributors": {
        "is_verified": "INTEGER DEFAULT 0",
        "verified_at": "TIMESTAMP",
        "risk_level": "TEXT DEFAULT 'low'",
        "is_frozen": "INTEGER DEFAULT 0",
        "frozen_reason": "TEXT",
        "last_bank_info_update": "TIMESTAMP",
        "first_withdrawal_at": "TIMESTAMP",
    },
    "commission_withdrawals": {
        "risk_score": "INTEGER DEFAULT 0",
        "risk_level": "TEXT DEFAULT 'low'",
        "risk_reasons": "TEXT DEFAULT '[]'",
    },
    "chat_messages": {
        "image_url": "TEXT",
    },
}


async def init_schema(db: DatabaseService) -> None:
    """Создаёт таблицы и индексы, добавляет недостающие колонки."""
    for statement in TABLES:
        await db.execute(statement)
    for statement in INDEXES:
        await db.execute(statement)
    await db.commit()

    for table, columns in COLUMN_MIGRATIONS.items():
        existing = await db.fetch_all(f"PRAGMA table_info({table})")
        existing_names = {col["name"] for col in existing}
        for column_name, column_definition in columns.items():
            if column_name not in existing_names:
                print(f"[MIGRATION] Adding {column_name} column to {table}...")
                await db.execute(
                    f"ALTER TABLE {table} ADD COLUMN {column_name} {column_definition}"
                )
                await db.commit()
                print(f"[MIGRATION] {column_name} column added successfully")
