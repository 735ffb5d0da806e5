"""Static Sonos customization documents served next to the SMAPI endpoint."""

from xml.sax.saxutils import escape

STRINGS_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<stringtables xmlns="http://sonos.com/sonosapi">
    <stringtable xml:lang="en-US">
        <string stringId="AppLinkMessage">Please sign in with your {service_name} credentials.</string>
        <string stringId="AppLinkSuccess">Authorization successful!</string>
    </stringtable>
</stringtables>
"""

# Icon size index → pixel size substituted into albumArtURI
ICON_SIZES = [(0, 60), (1, 180), (2, 300), (3, 600)]


def strings_xml(service_name: str) -> str:
    """String table referenced by ``appUrlStringId`` in getAppLink."""
    return STRINGS_TEMPLATE.format(service_name=escape(service_name))


def _size_map(name: str) -> str:
    entries = "\n".join(
        f'            <sizeEntry size="{size}" substitution="{pixels}" />'
        for size, pixels in ICON_SIZES
    )
    return f"        <{name}>\n{entries}\n        </{name}>"


def presentation_map_xml() -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<PresentationMap version="1" xmlns="http://sonos.com/sonosapi">\n'
        "    <Match>\n"
        f"{_size_map('browseIconSizeMap')}\n"
        f"{_size_map('searchIconSizeMap')}\n"
        "    </Match>\n"
        "</PresentationMap>\n"
    )
