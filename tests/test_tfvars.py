"""
tfvars Reader Tests

Validates parsing of the HCL subset used by terraform.tfvars files.
"""

import pytest

from utils.tfvars import load_tfvars, parse_tfvars


@pytest.mark.variables
def test_scalar_values():
    """Strings, numbers and booleans are converted to Python types"""
    values = parse_tfvars('''
project_name   = "public"
node_disk_size = 50
spot_price     = 0.25
enable_nat_gateway = true
single_nat_gateway = false
''')

    assert values == {
        'project_name': 'public',
        'node_disk_size': 50,
        'spot_price': 0.25,
        'enable_nat_gateway': True,
        'single_nat_gateway': False,
    }


@pytest.mark.variables
def test_multiline_list_with_trailing_comma():
    values = parse_tfvars('''
private_subnet_cidrs = [
  "10.0.10.0/24",
  "10.0.11.0/24",
]
kubernetes_version = "1.29"
''')

    assert values['private_subnet_cidrs'] == ["10.0.10.0/24", "10.0.11.0/24"]
    assert values['kubernetes_version'] == "1.29"


@pytest.mark.variables
def test_comments_are_ignored_but_not_inside_strings():
    values = parse_tfvars('''
# deployment name
project_name = "team-a" // trailing comment
/* block
   comment = "ignored" */
description = "uses # and // literally"
''')

    assert values == {'project_name': 'team-a', 'description': 'uses # and // literally'}


@pytest.mark.variables
def test_maps_are_parsed_without_leaking_nested_keys():
    """Keys inside a map must not appear as top-level variables"""
    values = parse_tfvars('''
tags = {
  Environment = "dev"
  "kubernetes.io/cluster/public-eks" = "shared"
}
node_disk_size = 20
''')

    assert values['tags'] == {'Environment': 'dev', 'kubernetes.io/cluster/public-eks': 'shared'}
    assert values['node_disk_size'] == 20
    assert 'Environment' not in values


@pytest.mark.variables
def test_single_line_map():
    values = parse_tfvars('labels = { team = "platform", tier = "system" }')

    assert values['labels'] == {'team': 'platform', 'tier': 'system'}


@pytest.mark.variables
def test_equals_sign_inside_string_does_not_split_value():
    values = parse_tfvars('note = "a, b = c"\nregion = "us-west-2"')

    assert values == {'note': 'a, b = c', 'region': 'us-west-2'}


@pytest.mark.variables
def test_unparseable_value_is_kept_raw():
    """Expressions are not evaluated; validation reports them instead"""
    values = parse_tfvars('vpc_cidr = cidrsubnet("10.0.0.0/8", 8, 0)')

    assert values['vpc_cidr'] == 'cidrsubnet("10.0.0.0/8", 8, 0)'


@pytest.mark.variables
def test_load_tfvars_reads_file(write_tfvars):
    path = write_tfvars()

    values = load_tfvars(path)

    assert values['project_name'] == 'public'
    assert values['public_subnet_cidrs'] == ["10.0.1.0/24", "10.0.2.0/24"]
    assert values['node_instance_types'] == ["t3.medium"]
