from types import SimpleNamespace

import pytest

from catalog_index.errors import PropertyPathError
from catalog_index.extensions import (
    ExtensionManager,
    ExtensionResult,
    Handled,
    IndexExtensionHandler,
    NOT_HANDLED,
)
from catalog_index.field_values import FieldValueResolver, TranslationHandler
from catalog_index.fields import (
    FieldDescriptor,
    FieldType,
    Locale,
    facet_property_name,
    property_name,
    searchable_property_name,
)

EN = Locale("en_US", is_default=True)
ES = Locale("es_ES")


def _product(**overrides):
    data = dict(
        id=1,
        description="Hot sauce",
        manufacturer="Acme",
        translations=[SimpleNamespace(field_name="description", locale_code="es_ES", translated_value="Salsa picante")],
        product_attributes=[],
    )
    data.update(overrides)
    return SimpleNamespace(**data)


DESCRIPTION = FieldDescriptor("description", "description", searchable=True, translatable=True)
MANUFACTURER = FieldDescriptor("manufacturer", "mfg", searchable=True, facet_field_type=FieldType.STRING)


class TestFieldNames:
    def test_text_has_no_suffix_and_locale_goes_last(self):
        assert property_name(DESCRIPTION, FieldType.TEXT, "en_US") == "description_en_US"
        assert property_name(DESCRIPTION, FieldType.TEXT) == "description"

    def test_typed_names(self):
        color = FieldDescriptor("color", "color", facet_field_type=FieldType.STRING)
        assert searchable_property_name(color, FieldType.STRING) == "color_s"
        assert searchable_property_name(color, FieldType.STRING, "es_ES") == "color_s_es_ES"
        assert facet_property_name(color) == "color_s"

    def test_facet_name_requires_a_facet_type(self):
        with pytest.raises(ValueError):
            facet_property_name(DESCRIPTION)

    def test_searchable_without_types_defaults_to_text(self):
        assert DESCRIPTION.effective_searchable_types() == (FieldType.TEXT,)
        assert FieldDescriptor("x", "x", searchable=False).effective_searchable_types() == ()


class TestResolver:
    def test_default_lookup_uses_empty_prefix(self):
        resolver = FieldValueResolver()
        assert resolver.resolve(_product(), MANUFACTURER, FieldType.STRING, [EN]) == {"": "Acme"}

    def test_default_lookup_errors_propagate(self):
        resolver = FieldValueResolver()
        missing = FieldDescriptor("weight", "weight", searchable=True)
        with pytest.raises(PropertyPathError):
            resolver.resolve(_product(), missing, FieldType.TEXT, [EN])

    def test_first_handled_extension_wins(self):
        class Upper(IndexExtensionHandler):
            priority = 10

            def resolve_property_values(self, item, descriptor, field_type, locales, context=None):
                return Handled({"": item.manufacturer.upper()})

        class Never(IndexExtensionHandler):
            priority = 20

            def resolve_property_values(self, *args, **kwargs):
                raise AssertionError("should not be consulted")

        resolver = FieldValueResolver(ExtensionManager([Never(), Upper()]))
        assert resolver.resolve(_product(), MANUFACTURER, FieldType.STRING, [EN]) == {"": "ACME"}


class TestTranslationHandler:
    def test_each_locale_gets_translation_or_fallback(self):
        resolver = FieldValueResolver(ExtensionManager([TranslationHandler()]))
        values = resolver.resolve(_product(), DESCRIPTION, FieldType.TEXT, [EN, ES])
        assert values == {"en_US": "Hot sauce", "es_ES": "Salsa picante"}

    def test_ignores_non_translatable_fields(self):
        handler = TranslationHandler()
        assert handler.resolve_property_values(_product(), MANUFACTURER, FieldType.STRING, [EN, ES]) is NOT_HANDLED

    def test_locales_without_any_value_are_omitted(self):
        product = _product(description=None)
        values = TranslationHandler().resolve_property_values(product, DESCRIPTION, FieldType.TEXT, [EN, ES])
        assert values == Handled({"es_ES": "Salsa picante"})

    def test_no_locales_means_no_values(self):
        values = TranslationHandler().resolve_property_values(_product(), DESCRIPTION, FieldType.TEXT, [])
        assert values == Handled({})


class TestExtensionManager:
    def test_handlers_run_in_priority_then_registration_order(self):
        calls = []

        def handler(label, priority, result):
            h = IndexExtensionHandler()
            h.priority = priority
            h.attach_additional_basic_fields = lambda item, document, context=None: calls.append(label) or result
            return h

        manager = ExtensionManager()
        manager.register(handler("late", 50, ExtensionResult.NOT_HANDLED))
        manager.register(handler("first", 1, ExtensionResult.HANDLED_CONTINUE))
        manager.register(handler("second", 1, ExtensionResult.NOT_HANDLED))

        assert manager.attach_additional_basic_fields(object(), {}) is ExtensionResult.HANDLED_CONTINUE
        assert calls == ["first", "second", "late"]

    def test_handled_stops_the_attach_chain(self):
        calls = []

        class Stop(IndexExtensionHandler):
            def attach_additional_basic_fields(self, item, document, context=None):
                calls.append("stop")
                return ExtensionResult.HANDLED

        class After(IndexExtensionHandler):
            priority = 5

            def attach_additional_basic_fields(self, item, document, context=None):
                calls.append("after")
                return NOT_HANDLED

        manager = ExtensionManager([After(), Stop()])
        assert manager.attach_additional_basic_fields(object(), {}) is ExtensionResult.HANDLED
        assert calls == ["stop"]

    def test_empty_manager_does_not_handle(self):
        manager = ExtensionManager()
        assert manager.attach_additional_basic_fields(object(), {}) is NOT_HANDLED
        assert manager.resolve_property_values(object(), DESCRIPTION, FieldType.TEXT, []) is NOT_HANDLED

    def test_load_entry_points_skips_broken_plugins(self, mocker):
        class Plugin(IndexExtensionHandler):
            priority = 3

        good = mocker.MagicMock()
        good.name = "good"
        good.load.return_value = Plugin
        broken = mocker.MagicMock()
        broken.name = "broken"
        broken.load.side_effect = ImportError("No module named 'missing_plugin'")
        entry_points = mocker.patch("catalog_index.extensions.metadata.entry_points", return_value=[broken, good])

        manager = ExtensionManager()
        assert manager.load_entry_points("catalog_index.extensions") == 1
        entry_points.assert_called_once_with(group="catalog_index.extensions")
        assert [type(h) for h in manager.handlers] == [Plugin]
