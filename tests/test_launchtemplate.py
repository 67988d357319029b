import pytest

from aksprovision.launchtemplate import (
    KARPENTER_MANAGED_TAG_KEY,
    Parameters,
    create_launch_template,
    merge_tags,
)


class StaticScript:
    def __init__(self, text):
        self.text = text

    def script(self):
        return self.text


class BrokenScript:
    def script(self):
        raise ValueError("cannot render")


def test_merge_tags_replaces_slashes_in_keys():
    merged = merge_tags({"a/b/c": "x"}, {"plain": "y"})
    assert merged == {"a_b_c": "x", "plain": "y"}


def test_merge_tags_later_maps_win():
    merged = merge_tags({"env": "dev", "team": "core"}, {"env": "prod"})
    assert merged == {"env": "prod", "team": "core"}


def test_merge_tags_empty():
    assert merge_tags() == {}


def test_create_launch_template_adds_cluster_tag():
    params = Parameters(
        cluster_name="mycluster",
        tags={"owner/name": "me"},
        user_data=StaticScript("#!/bin/bash\necho hi"),
        image_id="/images/ubuntu",
    )
    template = create_launch_template(params)
    assert template.user_data == "#!/bin/bash\necho hi"
    assert template.image_id == "/images/ubuntu"
    assert template.tags == {"owner_name": "me", "karpenter.azure.com_cluster": "mycluster"}


def test_cluster_tag_overrides_user_tag():
    params = Parameters(
        cluster_name="real",
        tags={KARPENTER_MANAGED_TAG_KEY: "fake"},
        user_data=StaticScript(""),
    )
    template = create_launch_template(params)
    assert template.tags[KARPENTER_MANAGED_TAG_KEY.replace("/", "_")] == "real"
    assert all("/" not in key for key in template.tags)


def test_user_data_error_propagates():
    params = Parameters(cluster_name="c", user_data=BrokenScript())
    with pytest.raises(ValueError, match="cannot render"):
        create_launch_template(params)