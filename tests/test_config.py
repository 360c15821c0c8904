from walkv.config import Configuration


def test_defaults():
    config = Configuration()
    assert config.checkpoint_size == 1024
    assert config.base_dir == "./db"


def test_with_base_dir_returns_same_object():
    config = Configuration()
    result = config.with_base_dir("/tmp/somewhere")
    assert result is config
    assert config.base_dir == "/tmp/somewhere"


def test_with_checkpoint_size_sets_value():
    config = Configuration()
    result = config.with_checkpoint_size(4096)
    assert result is config
    assert config.checkpoint_size == 4096


def test_chaining_keeps_both_settings():
    config = Configuration().with_base_dir("data").with_checkpoint_size(2048)
    assert (config.base_dir, config.checkpoint_size) == ("data", 2048)


def test_instances_are_independent():
    first = Configuration().with_checkpoint_size(10)
    second = Configuration()
    assert first.checkpoint_size == 10
    assert second.checkpoint_size == 1024