from formrelayapi.i18n import get_translation, resolve_language


def test_lookup_by_key_path():
    assert get_translation("en-US")("email.field") == "Field"
    assert get_translation("zh-CN")("common.yes") == "是"


def test_unknown_language_uses_default():
    assert resolve_language("fr-FR") == "zh-CN"
    assert resolve_language(None) == "zh-CN"
    assert get_translation("fr-FR")("app.name") == "表单中转"


def test_missing_keys():
    t = get_translation("en-US")
    assert t("email.nope") == "email.nope"
    assert t("email.nope", "fallback") == "fallback"
    # a key path that stops at a section is not a translation
    assert t("email") == "email"
