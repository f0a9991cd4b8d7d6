favorites_sql = """
CREATE TABLE favorites (
    id BIGINT GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,

    user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    -- No cascade: listing favorites skips rows whose product is gone
    product_id BIGINT REFERENCES products(id) ON DELETE SET NULL,

    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),

    CONSTRAINT unique_favorite UNIQUE (user_id, product_id)
);
"""
