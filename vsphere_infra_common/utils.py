#########
# Copyright (c) 2017-2020 Cloudify Platform Ltd. All rights reserved
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
import hashlib
from functools import wraps
from inspect import getfullargspec

from deepdiff import DeepDiff

from cloudify import ctx
from cloudify.decorators import operation

try:
    from cloudify.constants import RELATIONSHIP_INSTANCE, NODE_INSTANCE
except ImportError:
    NODE_INSTANCE = 'node-instance'
    RELATIONSHIP_INSTANCE = 'relationship-instance'


def _get_node(_ctx):
    if _ctx.type == RELATIONSHIP_INSTANCE:
        return _ctx.source.node
    else:  # _ctx.type == NODE_INSTANCE
        return _ctx.node


def get_args(func):
    """
    recursively collect all args from functions wrapped by decorators.
    """

    args = set()
    if hasattr(func, '__wrapped__'):
        args.update(get_args(func.__wrapped__))
    args.update(getfullargspec(func).args)
    return args


def op(func):
    """
    This decorator wraps node operations and provides all of the node's
    properties as function inputs.
    Any inputs provided directly to the operation will override corresponding
    properties.

    In order for other decorators to cooperate with @op, they must expose the
    wrapped function object as newfunction.__wrapped__ (this follows the
    convention started by the `decorator` library).
    """

    @operation(resumable=True)
    @wraps(func)
    def wrapper(**kwargs):
        kwargs.setdefault('ctx', ctx)

        requested_inputs = get_args(func)

        processed_kwargs = {}

        # Support both node instance and relationship node instance CTX.
        ctx_node = _get_node(ctx)

        for key in requested_inputs:
            if key in kwargs:
                processed_kwargs[key] = kwargs[key]
                continue
            processed_kwargs[key] = ctx_node.properties.get(key)

        return func(**processed_kwargs)

    return wrapper


def logger():
    try:
        logger = ctx.logger
    except RuntimeError as e:
        if 'No context' in str(e):
            logger = logging.getLogger()
        else:
            raise
    return logger


def prepare_for_log(inputs):
    result = {}
    for key, value in inputs.items():
        if isinstance(value, dict):
            value = prepare_for_log(value)
        if 'password' in key:
            value = '**********'
        result[key] = value
    return result


def password_digest(password):
    """Fingerprint of a secret that is safe to keep in runtime properties."""
    if not password:
        return ''
    return hashlib.sha256(password.encode('utf-8')).hexdigest()


def changed_keys(old, new, keys):
    """Names from `keys` whose value differs between the two dicts."""
    old = old or {}
    new = new or {}
    return [key for key in keys if old.get(key) != new.get(key)]


def check_drift(logger, expected_configuration, current_configuration):
    logger.info('Expected configuration: {0}'.format(expected_configuration))
    logger.info('Current configuration: {0}'.format(current_configuration))
    diff = DeepDiff(expected_configuration, current_configuration)
    if diff:
        logger.info('Configuration drift: {0}'.format(diff))
    else:
        logger.debug('No configuration drift.')
    return diff
