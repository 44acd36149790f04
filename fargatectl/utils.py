# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0
import json
import math
import re
import boto3
import yaml
from botocore.config import Config
from os import listdir
from os.path import isdir, isfile, join
import logging

logger = logging.getLogger(__name__)

FARGATE_AVAILABLE_SKUS = {
    256   : {"min":1024, "max":2048,    "incr":1024},
    512   : {"min":1024, "max":4096,    "incr":1024},
    1024  : {"min":2048, "max":8192,    "incr":1024},
    2048  : {"min":4096, "max":16384,   "incr":1024},
    4096  : {"min":8192, "max":30720,   "incr":1024},
    8192  : {"min":16384, "max":61440,  "incr":4096},
    16384 : {"min":32768, "max":122880, "incr":8192}
}

QUANTITY_REGEX = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([a-zA-Z]*)\s*$")

# ECS 1024 units = 1 vcpu
# plain numbers are already ECS units
def parse_cpu(value):
    if isinstance(value, bool):
        raise ValueError("invalid cpu value %s"%(value))
    if isinstance(value, (int, float)):
        return int(value)
    match = QUANTITY_REGEX.match(str(value))
    if match is None:
        raise ValueError("invalid cpu value %s"%(value))
    number = float(match.group(1))
    unit = match.group(2).lower()
    if unit in ("vcpu", "cpu"):
        return int(math.ceil(number*1024))
    if unit == "":
        return int(number)
    raise ValueError("invalid cpu unit %s"%(unit))

# ECS mem numerical input is in MiB
def parse_memory(value):
    if isinstance(value, bool):
        raise ValueError("invalid memory value %s"%(value))
    if isinstance(value, (int, float)):
        return int(value)
    match = QUANTITY_REGEX.match(str(value))
    if match is None:
        raise ValueError("invalid memory value %s"%(value))
    number = float(match.group(1))
    unit = match.group(2).lower()
    if unit in ("gb", "gib", "g"):
        return int(math.ceil(number*1024))
    if unit in ("mb", "mib", "m", ""):
        return int(math.ceil(number))
    raise ValueError("invalid memory unit %s"%(unit))

# pass the cpu and mem in ECS units
def get_fargate_sku(cpu, mem):
    if cpu <=256 and mem <=512:
        return {"cpu":256, "memory":512}
    fg_sku = {}
    fg_cpus = list(FARGATE_AVAILABLE_SKUS.keys())
    fg_cpus.sort()
    for c in fg_cpus:
        if c >= cpu:
            fg_mem = FARGATE_AVAILABLE_SKUS.get(c)
            fg_mem_min = fg_mem.get("min")
            fg_mem_max = fg_mem.get("max")
            fg_mem_incr = fg_mem.get("incr")
            diff = mem - fg_mem_min
            if diff <= 0:
                diff = 0
            diff = math.ceil(diff/fg_mem_incr)
            m = fg_mem_min+diff*fg_mem_incr
            if m <= fg_mem_max:
                fg_sku = {"cpu":c, "memory":m}
                break
    return(fg_sku)

# AWS resource names: alphanumerics and hyphens only,
# must not begin or end with a hyphen
def aws_name(name, max_len=32):
    clean = re.sub(r"[^a-zA-Z0-9-]+", "-", str(name))
    clean = re.sub(r"-{2,}", "-", clean).strip("-")
    return clean[:max_len].strip("-")

def get_client(service, region_name=""):
    boto_config = Config(retries={"max_attempts": 10, "mode": "adaptive"})
    if region_name is not None and len(region_name) > 0:
        boto_config = boto_config.merge(Config(region_name=region_name))
    return boto3.client(service, config=boto_config)

# region from AWS_REGION/AWS_DEFAULT_REGION or the profile, "" when unset
def default_region():
    return boto3.session.Session().region_name or ""

# reads yaml file(s) from source and returns dictionary list
def yaml_reader(source):
    yaml_files = []
    dict_list = []
    if isfile(source) and source.lower().endswith(('.yaml','yml')): yaml_files.append(source)
    if isdir(source):
        yaml_files = sorted([join(source,f) for f in listdir(source) if isfile(join(source, f)) and f.lower().endswith(('.yaml','yml'))])

    for yf in yaml_files:
        logger.info("Reading YAML from %s file"%(yf))
        with open(yf, 'r') as input_stream:
            try:
                for schema in yaml.safe_load_all(input_stream):
                    if schema is not None:
                        dict_list.append(schema)
            except yaml.YAMLError as error:
                logger.error("Error reading %s YAML file %s"%(yf, error))
    return (dict_list)

def write_yaml(filename, spec):
    logger.info("Writing YAML to %s"%(filename))
    yaml.Dumper.ignore_aliases = lambda self, data: True
    with open(filename, 'w') as yf:
        yf.write(yaml.dump(spec, Dumper=yaml.Dumper, sort_keys=False))

def write_json(filename, obj):
    logger.info("Writing JSON to %s"%(filename))
    with open(filename,'w') as jf:
        jf.write(json.dumps(obj, sort_keys=True, indent=2, separators=(',', ': ')))
        jf.write("\n")

# simple util functions
def dict_check(dict):
    if dict is None or len(dict)==0: return False
    return True
