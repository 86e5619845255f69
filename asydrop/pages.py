import html
import urllib.parse

from asydrop.repository.listing import DirectoryListing


PAGE_HEAD = """<!DOCTYPE html>
<html>
<head>
    <title>File Manager</title>
    <meta charset="UTF-8">
</head>
<body>
    <h1>File and Folder Manager</h1>
    <p>Upload a file: choose it and press Upload.<br>Upload a folder: compress it to a ZIP archive, rename it with the {marker} extension and upload it (it is extracted automatically).</p>
    <form action="/upload" method="post" enctype="multipart/form-data">
        <input type="file" name="file" required>
        <input type="submit" value="Upload">
    </form>
    <h2>Current directory contents:</h2>
"""

PAGE_TAIL = """</body>
</html>"""


def download_link(name):
    return '/download?path=%s' % urllib.parse.quote_plus(name)


def render_listing(listing:DirectoryListing, marker:str = '.up'):
    """Renders the index page: upload form, folders (downloaded as ZIP), then files."""
    parts = [PAGE_HEAD.format(marker=html.escape(marker))]

    parts.append('    <h3>Folders:</h3>\n    <ul>\n')
    for name in listing.directories:
        parts.append('        <li><a href="%s">%s</a> (download as ZIP)</li>\n' % (html.escape(download_link(name)), html.escape(name)))
    parts.append('    </ul>\n')

    parts.append('    <h3>Files:</h3>\n    <ul>\n')
    for name in listing.files:
        parts.append('        <li><a href="%s">%s</a></li>\n' % (html.escape(download_link(name)), html.escape(name)))
    parts.append('    </ul>\n')

    parts.append(PAGE_TAIL)
    return ''.join(parts)
