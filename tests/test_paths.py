import pytest

from xetpl.engine.errors import UnresolvedPathError
from xetpl.engine.paths import (
    resolve_relative_dir,
    rewrite_src,
    split_target,
    to_root_relative,
    web_path_for,
)


def test_split_target():
    assert split_target("header.html") == (".", "header.html", "html")
    assert split_target("css/Board.CSS") == ("css", "Board.CSS", "css")


class TestRewriteSrc:
    WEB = "/xe/modules/board/skins/default/"

    def test_prefixes_web_path(self):
        assert rewrite_src("./img/a.png", self.WEB) == self.WEB + "img/a.png"

    def test_collapses_parent_segments(self):
        assert rewrite_src("../img/a.png", "/m/skins/default/") == "/m/skins/img/a.png"

    def test_dedupes_repeated_segments(self):
        assert rewrite_src("skins/default/img/a.png", "/m/skins/default/") == "/m/skins/default/img/a.png"

    def test_inner_dot_segments(self):
        assert rewrite_src("img/./a.png", "/t/") == "/t/img/a.png"


class TestResolveRelativeDir:
    @pytest.fixture
    def page(self, write):
        write("tpl/css/board.css")
        write("shared/footer.html")
        return write("tpl/page.html")

    def test_child_directory(self, page, app_root):
        assert resolve_relative_dir("css", page, app_root) == "tpl/css"

    def test_current_directory(self, page, app_root):
        assert resolve_relative_dir(".", page, app_root) == "tpl"

    def test_parent_directory(self, page, app_root):
        assert resolve_relative_dir("../shared", page, app_root) == "shared"

    def test_root_itself(self, page, app_root):
        assert resolve_relative_dir("..", page, app_root) == "."

    def test_absolute_path_is_root_relative(self, page, app_root):
        assert resolve_relative_dir("/common/js", page, app_root) == "common/js"

    def test_overlap_fallback(self, write, app_root):
        write("modules/board/skins/default/css/board.css")
        page = write("modules/board/skins/default/list.html")
        assert resolve_relative_dir("skins/default/css", page, app_root) == "modules/board/skins/default/css"

    def test_unresolvable(self, page, app_root):
        with pytest.raises(UnresolvedPathError):
            resolve_relative_dir("nope/dir", page, app_root)

    def test_outside_root(self, page, app_root):
        with pytest.raises(UnresolvedPathError):
            resolve_relative_dir("../..", page, app_root)


def test_to_root_relative(app_root):
    assert to_root_relative(app_root / "a" / "b", app_root) == "a/b"
    assert to_root_relative(app_root, app_root) == "."


def test_web_path_for(app_root):
    (app_root / "modules" / "board").mkdir(parents=True)
    assert web_path_for(app_root / "modules" / "board", app_root, "/xe") == "/xe/modules/board/"
    assert web_path_for(app_root / "modules" / "board", app_root) == "/modules/board/"
    assert web_path_for(app_root, app_root, "/xe/") == "/xe/"
