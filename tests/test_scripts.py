from werkzeug.security import check_password_hash

from app.kibbledrop.constants import PERMISSIONS
from app.kibbledrop.models import Permission, Role, User
from app.kibbledrop.modules.catalog.models import Product
from scripts._db_utils import script_session
from scripts.init_db import create_tables, seed_only
from scripts.seed_catalog import SAMPLE_PRODUCTS, seed_catalog


def test_init_db_seed_is_idempotent(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'init.db'}"
    monkeypatch.setenv("ADMIN_EMAIL", "Owner@KibbleDrop.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "first-password")

    create_tables(db_url)
    seed_only(database_url=db_url)

    monkeypatch.setenv("ADMIN_PASSWORD", "second-password")
    seed_only(database_url=db_url)

    with script_session(db_url) as s:
        assert s.query(Permission).count() == len(PERMISSIONS)
        assert {r.key for r in s.query(Role).all()} == {"admin", "customer"}
        admin = s.query(User).one()
        assert admin.email == "owner@kibbledrop.com"
        assert admin.role_keys() == ["admin"]
        assert sorted(admin.permission_keys()) == sorted(PERMISSIONS)
        # an existing admin keeps their password
        assert check_password_hash(admin.password_hash, "first-password")


def test_seed_catalog_only_fills_empty_catalog(tmp_path):
    db_url = f"sqlite:///{tmp_path/'catalog.db'}"
    create_tables(db_url)

    assert seed_catalog(database_url=db_url) == len(SAMPLE_PRODUCTS)
    assert seed_catalog(database_url=db_url) == 0

    with script_session(db_url) as s:
        assert s.query(Product).count() == len(SAMPLE_PRODUCTS)
        assert s.query(Product).filter(Product.featured.is_(True)).count() == 3
