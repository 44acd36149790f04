# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0


class SpecError(ValueError):
    """Raised when a deployment file cannot be turned into a plan."""
