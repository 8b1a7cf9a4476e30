"""Mapper configuration checks for the billing models."""

import warnings

import pytest
from services.billing_service.models import Invoice, Payment
from sqlalchemy import inspect
from sqlalchemy.orm import configure_mappers


@pytest.mark.unit
def test_mappers_configure_without_warnings():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        configure_mappers()


@pytest.mark.unit
@pytest.mark.parametrize(
    "model, name",
    [(Invoice, "payments"), (Invoice, "primary_swimmer"), (Payment, "invoice")],
)
def test_untraversed_relationships_refuse_implicit_loads(model, name):
    assert inspect(model).relationships[name].lazy == "raise"
