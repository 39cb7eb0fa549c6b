from backend.core.path_mapping import map_host_path
from backend.utils.config import PathMapping

MAPPINGS = [
    PathMapping(host_path="/mnt/nas", container_path="/media"),
    PathMapping(host_path="/mnt/nas/movies", container_path="/movies"),
]


def test_longest_prefix_wins():
    assert map_host_path("/mnt/nas/movies/Heat (1995)", MAPPINGS) == "/movies/Heat (1995)"
    assert map_host_path("/mnt/nas/tv", MAPPINGS) == "/media/tv"


def test_exact_prefix_maps_to_container_root():
    assert map_host_path("/mnt/nas/", MAPPINGS) == "/media"


def test_prefix_must_end_at_a_separator():
    assert map_host_path("/mnt/nasty/files", MAPPINGS) == "/mnt/nasty/files"


def test_windows_separators_are_normalized():
    mappings = [PathMapping(host_path="D:/Media", container_path="/media")]
    assert map_host_path("D:\\Media\\Movies", mappings) == "/media/Movies"


def test_configured_mappings_are_used_by_default(app_config):
    app_config.path_mappings = [PathMapping(host_path="/srv", container_path="/data")]
    assert map_host_path("/srv/films") == "/data/films"
