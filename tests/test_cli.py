"""
tests/test_cli.py -- Tests for the main.py admin CLI.

Covers:
  - create-user assigns any role and hashes the password
  - create-user reports validation errors with exit code 1
  - reactivate restores a soft-deleted account
"""

from __future__ import annotations

import pytest

import main
from auth.models import Role
from auth.passwords import verify_password


def test_create_admin(store, capsys):
    code = main.main(
        ["create-user", "--name", "Root", "--email", "Root@Example.com", "--role", "admin", "--password", "adminpass1"],
        store=store,
    )
    assert code == 0
    user = store.get_by_email("root@example.com")
    assert user.role is Role.ADMIN
    assert verify_password("adminpass1", user.hashed_password)
    assert "Created admin root@example.com" in capsys.readouterr().out


def test_create_user_prompts_for_password(store, monkeypatch):
    answers = iter(["guidepass1", "guidepass1"])
    monkeypatch.setattr(main.getpass, "getpass", lambda prompt: next(answers))
    code = main.main(["create-user", "--name", "Guide", "--email", "guide@example.com", "--role", "lead-guide"], store=store)
    assert code == 0
    assert store.get_by_email("guide@example.com").role is Role.LEAD_GUIDE


def test_create_user_validation_error(store, capsys):
    code = main.main(["create-user", "--name", "Ada", "--email", "ada@example.com", "--password", "short"], store=store)
    assert code == 1
    assert "Error:" in capsys.readouterr().err
    assert store.get_by_email("ada@example.com") is None


def test_create_user_rejects_unknown_role(store):
    with pytest.raises(SystemExit):
        main.main(["create-user", "--name", "Ada", "--email", "ada@example.com", "--role", "lead_guide"], store=store)


def test_reactivate(store, make_user):
    user = make_user("ada@example.com")
    store.update_user(user.id, active=False)
    assert main.main(["reactivate", user.id], store=store) == 0
    assert store.get_by_id(user.id) is not None


def test_reactivate_unknown(store, capsys):
    assert main.main(["reactivate", "0" * 32], store=store) == 1
    assert "no user" in capsys.readouterr().err
