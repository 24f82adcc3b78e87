# sync/scope.py
from models import AnnotationScope

DEFAULT_LANGUAGE = 'id'

# Versions each language may carry; the first one is the fallback
SUPPORTED_VERSIONS = {
    'id': ('TB1', 'TB2'),
    'en': ('EN1',),
}


def _normalize_language(raw_language):
    text = str(raw_language or '').strip().lower()
    return 'en' if text == 'en' else DEFAULT_LANGUAGE


def _normalize_version(language_code, raw_version):
    text = str(raw_version or '').strip().upper()
    versions = SUPPORTED_VERSIONS[language_code]
    if text in versions:
        return text
    return versions[0]


def resolve_scope(raw_language, raw_version):
    """Coerce any (language, version) pair into one of the canonical scopes.

    Never fails and is idempotent: resolving a canonical scope returns it unchanged.
    """
    language_code = _normalize_language(raw_language)
    return AnnotationScope(
        language_code=language_code,
        version_code=_normalize_version(language_code, raw_version),
    )


def resolve_row_scope(row):
    return resolve_scope(row.get('language_code'), row.get('version_code'))


class ScopeResolver:
    """Callable seam around resolve_scope so collaborators can take it as a dependency."""

    def resolve(self, raw_language, raw_version):
        return resolve_scope(raw_language, raw_version)

    def resolve_scope_object(self, scope):
        if isinstance(scope, AnnotationScope):
            return resolve_scope(scope.language_code, scope.version_code)
        return resolve_row_scope(scope or {})

    def same_scope(self, raw_scope, scope):
        return self.resolve_scope_object(raw_scope) == self.resolve_scope_object(scope)
